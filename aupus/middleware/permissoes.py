"""
Aupus - Checagem de permissões por role
"""
import logging
from functools import wraps

from flask import current_app, g, request

from ..errors import resposta_auth, resposta_erro, ip_cliente
from .jwt_auth import autenticar_requisicao

logger = logging.getLogger(__name__)


def get_resolvedor():
    return current_app.extensions['aupus.permissoes']


def check_permission(*permissoes):
    """
    Decorator: exige que o role do usuário conceda ao menos uma das permissões.
    Sem permissões listadas basta estar autenticado.
    """
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            try:
                usuario = g.get('usuario_atual')
                if usuario is None:
                    if autenticar_requisicao() is not None:
                        return resposta_auth('Não autenticado.', 'auth_error')
                    usuario = g.usuario_atual

                if not usuario.is_active:
                    logger.warning(f"Permissão - usuário inativo | user_id={usuario.id} url={request.path}")
                    return resposta_auth('Usuário inativo.', 'user_inactive')

                permitido = get_resolvedor().permite(usuario.role, permissoes)
            except Exception as e:
                logger.error(f"Permissão - erro ao resolver: {type(e).__name__}: {e} | url={request.path}", exc_info=True)
                return resposta_auth('Erro de autenticação.', 'auth_error')

            if not permitido:
                logger.warning(
                    f"Permissão negada | user_id={usuario.id} role={usuario.role} "
                    f"requeridas={list(permissoes)} url={request.path} ip={ip_cliente()}"
                )
                return resposta_erro('Acesso negado. Permissão insuficiente.', 403,
                                     error_type='forbidden', required_permissions=list(permissoes))

            return view(*args, **kwargs)
        return wrapper
    return decorator


def exigir_roles(*roles):
    """Restringe a rota a roles específicos (ex.: histórico mensal só admin/analista)."""
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            usuario = g.get('usuario_atual')
            if usuario is None or usuario.role not in roles:
                logger.warning(f"Role não autorizado | role={getattr(usuario, 'role', None)} url={request.path}")
                return resposta_erro('Acesso negado. Permissão insuficiente.', 403, error_type='forbidden')
            return view(*args, **kwargs)
        return wrapper
    return decorator
