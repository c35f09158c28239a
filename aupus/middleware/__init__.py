"""
Aupus - Middleware da API
Ordem aplicada por `protegido`: rate limit → autenticação → auto refresh → permissão → view.
"""
from .jwt_auth import jwt_api_auth, autenticar_requisicao, extrair_token
from .jwt_refresh import jwt_auto_refresh
from .permissoes import check_permission, exigir_roles
from .rate_limit import rate_limit

__all__ = [
    'jwt_api_auth',
    'autenticar_requisicao',
    'extrair_token',
    'jwt_auto_refresh',
    'check_permission',
    'exigir_roles',
    'rate_limit',
    'protegido',
]


def protegido(*permissoes, max_tentativas=None, decaimento_minutos=None, auto_refresh=True):
    """Pilha padrão das rotas autenticadas."""
    def decorator(view):
        wrapped = check_permission(*permissoes)(view)
        if auto_refresh:
            wrapped = jwt_auto_refresh(wrapped)
        wrapped = jwt_api_auth(wrapped)
        return rate_limit(max_tentativas, decaimento_minutos)(wrapped)
    return decorator
