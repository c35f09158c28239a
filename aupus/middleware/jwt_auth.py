"""
Aupus - Autenticação JWT das rotas da API
Sempre responde JSON; nunca deixa a falha chegar ao handler global.
"""
import logging
from functools import wraps

from flask import request, g

from ..errors import resposta_auth, ip_cliente
from ..services.token_service import ErroToken, get_token_store, carregar_usuario

logger = logging.getLogger(__name__)


def extrair_token():
    """
    Lê o header Authorization.
    Retorna (token, None) ou (None, 'missing_token' | 'empty_token').
    """
    header = request.headers.get('Authorization')
    if not header:
        return None, 'missing_token'
    if header.rstrip() == 'Bearer':
        return None, 'empty_token'
    if not header.startswith('Bearer '):
        return None, 'missing_token'
    token = header[7:].strip()
    if not token:
        return None, 'empty_token'
    return token, None


def _contexto(usuario_id=None):
    return (f"url={request.url} method={request.method} ip={ip_cliente()}"
            f"{f' user_id={usuario_id}' if usuario_id is not None else ''}")


def autenticar_requisicao():
    """
    Valida o bearer token e vincula o usuário à requisição (g.usuario_atual).
    Retorna None em caso de sucesso ou a resposta de erro pronta.
    """
    logger.debug(f"JWT Auth - início | {_contexto()} has_auth_header={'Authorization' in request.headers}")

    token, falha = extrair_token()
    if falha == 'missing_token':
        logger.warning(f"JWT Auth - header Authorization ausente ou inválido | {_contexto()}")
        return resposta_auth('Token de acesso não fornecido.', 'missing_token')
    if falha == 'empty_token':
        logger.warning(f"JWT Auth - token vazio | {_contexto()}")
        return resposta_auth('Token vazio.', 'empty_token')

    try:
        store = get_token_store()
        claims = store.autenticar(token)
        usuario = carregar_usuario(claims)
    except ErroToken as e:
        logger.warning(f"JWT Auth - {e.error_type}: {e} | {_contexto()}")
        return resposta_auth(e.message, e.error_type)
    except Exception as e:
        logger.error(f"JWT Auth - erro inesperado {type(e).__name__}: {e} | {_contexto()}", exc_info=True)
        return resposta_auth('Erro interno de autenticação.', 'auth_error', status=500)

    if usuario is None:
        logger.warning(f"JWT Auth - usuário não encontrado para token válido | sub={claims.get('sub')} {_contexto()}")
        return resposta_auth('Usuário não encontrado.', 'user_not_found')

    if not usuario.is_active:
        logger.warning(f"JWT Auth - usuário inativo tentando acessar | email={usuario.email} {_contexto(usuario.id)}")
        return resposta_auth('Usuário inativo.', 'user_inactive')

    g.usuario_atual = usuario
    g.usuario_id = usuario.id
    g.jwt_claims = claims
    g.jwt_token = token
    logger.info(f"JWT Auth - autenticação bem-sucedida | role={usuario.role} {_contexto(usuario.id)}")
    return None


def limpar_identidade():
    """before_request: identidade vale só para a requisição corrente."""
    for chave in ('usuario_atual', 'usuario_id', 'jwt_claims', 'jwt_token'):
        g.pop(chave, None)


def jwt_api_auth(view):
    """Decorator: exige bearer token válido de usuário ativo."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        erro = autenticar_requisicao()
        if erro is not None:
            return erro
        return view(*args, **kwargs)
    return wrapper
