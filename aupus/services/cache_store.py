"""
Aupus - Store de cache compartilhado
Usado pelo rate limit (contadores) e pela blacklist de tokens JWT.

CACHE_URL:
  redis://host:6379/2  → Redis (produção, vários workers)
  memory://            → dicionário do processo (testes / dev single-process)
"""
import json
import logging
import threading
import time

import redis

logger = logging.getLogger(__name__)


class RedisStore:
    """Store apoiado no Redis; valores serializados em JSON."""

    def __init__(self, url, prefixo='aupus:'):
        self.client = redis.Redis.from_url(url, decode_responses=True)
        self.prefixo = prefixo

    def _k(self, chave):
        return f"{self.prefixo}{chave}"

    def get(self, chave, default=None):
        bruto = self.client.get(self._k(chave))
        if bruto is None:
            return default
        return json.loads(bruto)

    def put(self, chave, valor, ttl):
        """Grava com expiração (segundos); cada escrita renova o TTL."""
        self.client.set(self._k(chave), json.dumps(valor), ex=max(1, int(ttl)))

    def has(self, chave):
        return bool(self.client.exists(self._k(chave)))

    def forget(self, chave):
        self.client.delete(self._k(chave))

    def ping(self):
        return self.client.ping()


class MemoryStore:
    """Store em memória do processo, com expiração por chave."""

    def __init__(self):
        self._dados = {}
        self._lock = threading.Lock()

    def _vivo(self, chave):
        item = self._dados.get(chave)
        if item is None:
            return None
        valor, expira_em = item
        if expira_em is not None and expira_em <= time.time():
            del self._dados[chave]
            return None
        return item

    def get(self, chave, default=None):
        with self._lock:
            item = self._vivo(chave)
        return default if item is None else item[0]

    def put(self, chave, valor, ttl):
        with self._lock:
            self._dados[chave] = (valor, time.time() + ttl if ttl else None)

    def has(self, chave):
        with self._lock:
            return self._vivo(chave) is not None

    def forget(self, chave):
        with self._lock:
            self._dados.pop(chave, None)

    def flush(self):
        with self._lock:
            self._dados.clear()

    def ping(self):
        return True


def criar_cache_store(url):
    if not url or url.startswith('memory://'):
        logger.info("Cache store: memória do processo")
        return MemoryStore()
    logger.info(f"Cache store: Redis ({url.split('@')[-1]})")
    return RedisStore(url)


def init_cache(app):
    store = criar_cache_store(app.config.get('CACHE_URL'))
    app.extensions['aupus.cache'] = store
    return store


def get_cache():
    from flask import current_app
    return current_app.extensions['aupus.cache']
