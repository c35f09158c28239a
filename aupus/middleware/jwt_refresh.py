"""
Aupus - Renovação automática do token JWT
Tokens perto de expirar são trocados na própria requisição; o novo token
volta nos headers da resposta.
"""
import logging
from functools import wraps

from flask import current_app, g, make_response

from ..errors import resposta_auth
from ..services.token_service import ErroToken, get_token_store, carregar_usuario
from .jwt_auth import extrair_token

logger = logging.getLogger(__name__)


def _anexar_novo_token(resposta, novo_token):
    resposta.headers['Authorization'] = f"Bearer {novo_token}"
    resposta.headers['X-New-Token'] = novo_token
    resposta.headers['X-Token-Refreshed'] = 'true'
    return resposta


def _renovar(store, claims):
    """Renova garantindo que o usuário ainda existe e está ativo."""
    usuario = g.get('usuario_atual') or carregar_usuario(claims)
    if usuario is None or not usuario.is_active:
        raise ErroToken('Usuário inexistente ou inativo')
    return store.renovar(claims)


def _claims_da_requisicao(store):
    """
    Claims já validados pela autenticação ou, rodando sozinho,
    lidos do header aceitando token expirado.
    """
    claims = g.get('jwt_claims')
    if claims is not None:
        return claims
    token, _ = extrair_token()
    if token is None:
        return None
    return store.autenticar(token, permitir_expirado=True)


def jwt_auto_refresh(view):
    """Decorator: renova o token quando restam menos de JWT_REFRESH_THRESHOLD segundos."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        novo_token = None
        aviso_restante = None

        try:
            store = get_token_store()
            claims = _claims_da_requisicao(store)
            if claims is None:
                return view(*args, **kwargs)

            limite = current_app.config.get('JWT_REFRESH_THRESHOLD', 1800)
            restante = store.segundos_restantes(claims)

            if restante <= 0:
                # última chance: token já expirado
                try:
                    novo_token = _renovar(store, claims)
                    logger.info(f"JWT Refresh - token expirado renovado | sub={claims.get('sub')}")
                except Exception as e:
                    logger.warning(f"JWT Refresh - falha ao renovar token expirado: {e} | sub={claims.get('sub')}")
                    return resposta_auth('Token expirado. Faça login novamente.', 'token_expired')

            elif restante < limite:
                try:
                    novo_token = _renovar(store, claims)
                    logger.info(f"JWT Refresh - token renovado | sub={claims.get('sub')} restante={restante}s")
                except Exception as e:
                    aviso_restante = restante
                    logger.warning(f"JWT Refresh - renovação falhou, seguindo com token atual: {e} | restante={restante}s")

        except ErroToken as e:
            logger.warning(f"JWT Refresh - {e.error_type}: {e}")
            return resposta_auth(e.message, e.error_type)
        except Exception as e:
            logger.error(f"JWT Refresh - erro inesperado {type(e).__name__}: {e}", exc_info=True)
            return resposta_auth('Erro de autenticação.', 'auth_error')

        resposta = make_response(view(*args, **kwargs))
        if novo_token:
            _anexar_novo_token(resposta, novo_token)
        elif aviso_restante is not None:
            resposta.headers['X-Token-Expires-In'] = str(int(aviso_restante))
            resposta.headers['X-Token-Warning'] = 'true'
        return resposta
    return wrapper
