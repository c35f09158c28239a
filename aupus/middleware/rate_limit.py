"""
Aupus - Rate limit da API por usuário (ou IP)
Contador no cache compartilhado; cada requisição aceita renova a janela.
Limite aproximado: leitura e escrita não são atômicas entre workers.
"""
import logging
import time
from functools import wraps

from flask import current_app, g, request, make_response
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity

from ..errors import resposta_erro, ip_cliente
from ..services.cache_store import get_cache

logger = logging.getLogger(__name__)


def chave_rate_limit():
    """user:<id> quando há usuário identificável; senão ip:<ip>."""
    usuario = g.get('usuario_atual')
    if usuario is not None:
        return f"api_rate_limit:user:{usuario.id}"
    try:
        verify_jwt_in_request(optional=True)
        identidade = get_jwt_identity()
        if identidade:
            return f"api_rate_limit:user:{identidade}"
    except Exception as e:
        # token ruim não bloqueia aqui; a autenticação responde depois
        logger.debug(f"Rate limit - identidade não resolvida, usando IP: {type(e).__name__}")
    return f"api_rate_limit:ip:{ip_cliente()}"


def rate_limit(max_tentativas=None, decaimento_minutos=None):
    """Decorator: no máximo max_tentativas por janela de decaimento_minutos."""
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            maximo = max_tentativas or current_app.config.get('RATELIMIT_MAX_TENTATIVAS', 60)
            minutos = decaimento_minutos or current_app.config.get('RATELIMIT_DECAIMENTO_MINUTOS', 1)
            janela = int(minutos * 60)

            cache = get_cache()
            chave = chave_rate_limit()
            tentativas = int(cache.get(chave, 0) or 0)

            if tentativas >= maximo:
                logger.warning(
                    f"Rate limit excedido | ip={ip_cliente()} user_agent={request.user_agent.string} "
                    f"rota={request.endpoint} tentativas={tentativas} max={maximo}"
                )
                resposta, status = resposta_erro(
                    'Muitas requisições. Tente novamente em alguns instantes.', 429,
                    error_type='rate_limit_exceeded', retry_after=janela,
                )
                resposta.headers['Retry-After'] = str(janela)
                return resposta, status

            cache.put(chave, tentativas + 1, janela)

            resposta = make_response(view(*args, **kwargs))
            resposta.headers['X-RateLimit-Limit'] = str(maximo)
            resposta.headers['X-RateLimit-Remaining'] = str(max(0, maximo - tentativas - 1))
            resposta.headers['X-RateLimit-Reset'] = str(int(time.time()) + janela)
            return resposta
        return wrapper
    return decorator
