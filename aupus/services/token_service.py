"""
Aupus - Store de tokens JWT
Emissão, validação, renovação e revogação (blacklist) de tokens de acesso.
A blacklist vive no cache compartilhado, com TTL até o token não poder
mais ser usado nem renovado.
"""
import logging
import time

from flask import current_app
from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException, JWTDecodeError, WrongTokenError
from jwt import ExpiredSignatureError, InvalidTokenError

logger = logging.getLogger(__name__)

CLAIMS_USUARIO = ('role', 'email', 'nome', 'is_active')


class ErroToken(Exception):
    error_type = 'jwt_error'
    message = 'Erro de autenticação.'

    def __init__(self, detalhe=None):
        super().__init__(detalhe or self.message)
        self.detalhe = detalhe


class TokenExpirado(ErroToken):
    error_type = 'token_expired'
    message = 'Token expirado. Faça login novamente.'


class TokenInvalido(ErroToken):
    error_type = 'token_invalid'
    message = 'Token inválido. Faça login novamente.'


class TokenRevogado(ErroToken):
    error_type = 'token_blacklisted'
    message = 'Token foi invalidado. Faça login novamente.'


class ErroJWT(ErroToken):
    pass


class TokenStore:
    """Fachada sobre flask-jwt-extended + blacklist no cache."""

    PREFIXO = 'jwt_blacklist:'

    def __init__(self, cache, refresh_ttl, carencia_blacklist=0):
        self.cache = cache
        self.refresh_ttl = int(refresh_ttl.total_seconds()) if hasattr(refresh_ttl, 'total_seconds') else int(refresh_ttl)
        self.carencia_blacklist = int(carencia_blacklist or 0)

    # ---------------------------------------------------------
    # Emissão / validação
    # ---------------------------------------------------------

    def emitir(self, usuario):
        return create_access_token(identity=str(usuario.id), additional_claims=usuario.claims_jwt())

    def decodificar(self, token, permitir_expirado=False):
        try:
            return decode_token(token, allow_expired=permitir_expirado)
        except ExpiredSignatureError as e:
            raise TokenExpirado(str(e))
        except (InvalidTokenError, JWTDecodeError, WrongTokenError) as e:
            raise TokenInvalido(str(e))
        except JWTExtendedException as e:
            raise ErroJWT(str(e))

    def autenticar(self, token, permitir_expirado=False):
        """Decodifica e confere a blacklist. Retorna os claims."""
        claims = self.decodificar(token, permitir_expirado=permitir_expirado)
        if self.esta_revogado(claims.get('jti')):
            raise TokenRevogado()
        return claims

    # ---------------------------------------------------------
    # Blacklist
    # ---------------------------------------------------------

    def esta_revogado(self, jti):
        if not jti:
            return False
        efetivo_em = self.cache.get(self.PREFIXO + jti)
        return efetivo_em is not None and time.time() >= efetivo_em

    def revogar(self, claims, carencia=0):
        """Revoga o jti; com carência o token antigo segue aceito por alguns segundos."""
        agora = time.time()
        limite = max(claims.get('exp', agora), claims.get('iat', agora) + self.refresh_ttl)
        ttl = max(1, int(limite - agora) + carencia)
        efetivo_em = agora + carencia
        anterior = self.cache.get(self.PREFIXO + claims['jti'])
        if anterior is not None:
            # nova renovação com o token antigo não estende a carência
            efetivo_em = min(efetivo_em, anterior)
        self.cache.put(self.PREFIXO + claims['jti'], efetivo_em, ttl)
        logger.info(f"Token revogado: jti={claims['jti']} sub={claims.get('sub')} carencia={carencia}s")

    # ---------------------------------------------------------
    # Renovação
    # ---------------------------------------------------------

    @staticmethod
    def segundos_restantes(claims):
        return int(claims.get('exp', 0) - time.time())

    def pode_renovar(self, claims):
        return time.time() <= claims.get('iat', 0) + self.refresh_ttl

    def renovar(self, claims):
        """
        Emite novo token com a mesma identidade e claims do usuário,
        e manda o antigo para a blacklist (respeitando a carência).
        """
        if self.esta_revogado(claims.get('jti')):
            raise TokenRevogado()
        if not self.pode_renovar(claims):
            raise TokenExpirado('Janela de renovação encerrada')

        extras = {k: claims[k] for k in CLAIMS_USUARIO if k in claims}
        novo = create_access_token(identity=claims['sub'], additional_claims=extras)
        self.revogar(claims, carencia=self.carencia_blacklist)
        return novo


def init_token_store(app, jwt_manager, cache):
    store = TokenStore(
        cache,
        refresh_ttl=app.config.get('JWT_REFRESH_TTL', 14 * 24 * 3600),
        carencia_blacklist=app.config.get('JWT_BLACKLIST_GRACE_PERIOD', 0),
    )
    app.extensions['aupus.tokens'] = store

    @jwt_manager.token_in_blocklist_loader
    def _token_revogado(jwt_header, jwt_payload):
        return store.esta_revogado(jwt_payload.get('jti'))

    @jwt_manager.user_lookup_loader
    def _carregar_usuario(jwt_header, jwt_payload):
        from ..models.database import db, Usuario
        return db.session.get(Usuario, int(jwt_payload['sub']))

    return store


def get_token_store():
    return current_app.extensions['aupus.tokens']


def carregar_usuario(claims):
    from ..models.database import db, Usuario
    try:
        return db.session.get(Usuario, int(claims.get('sub')))
    except (TypeError, ValueError):
        return None
