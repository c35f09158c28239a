"""
Aupus - Backend administrativo de propostas e Controle Clube
Aplicação principal Flask + APScheduler
"""
import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_migrate import Migrate

from .models.database import db
from .config.settings import config_map
from .errors import registrar_handlers, resposta_auth
from .middleware.jwt_auth import limpar_identidade
from .services.cache_store import init_cache
from .services.permissoes import ResolvedorPermissoes
from .services.token_service import init_token_store


def create_app(config_name=None):
    """Factory para criação da aplicação Flask."""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config_map.get(config_name, config_map['default']))

    _configurar_logs(app)

    # Extensões
    db.init_app(app)
    CORS(app, resources={r"/api/*": {"origins": "*"}},
         expose_headers=app.config['CORS_EXPOSE_HEADERS'])
    jwt = JWTManager(app)
    _registrar_erros_jwt(jwt)
    Migrate(app, db)

    # Cache compartilhado, tokens e permissões
    cache = init_cache(app)
    init_token_store(app, jwt, cache)
    app.extensions['aupus.permissoes'] = ResolvedorPermissoes()

    registrar_handlers(app)
    app.before_request(limpar_identidade)

    # Celery (opcional; o scheduler interno cobre o histórico mensal)
    _init_celery(app)

    # APScheduler: histórico mensal automático
    if app.config.get('SCHEDULER_ENABLED'):
        _init_scheduler(app)

    # Registrar blueprints (rotas da API)
    from .api.routes import api_bp
    app.register_blueprint(api_bp, url_prefix='/api')

    with app.app_context():
        db.create_all()

    @app.route('/health')
    def health():
        try:
            cache_ok = bool(cache.ping())
        except Exception as e:
            app.logger.warning(f"Health: cache indisponível: {e}")
            cache_ok = False
        return {'status': 'ok' if cache_ok else 'degraded', 'service': 'Aupus', 'cache': cache_ok}

    return app


def _configurar_logs(app):
    nivel = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(level=nivel, format='%(asctime)s %(levelname)s [%(name)s] %(message)s')
    logging.getLogger('aupus').setLevel(nivel)


def _registrar_erros_jwt(jwt):
    """Mesmo corpo de erro do middleware para rotas que usem jwt_required."""

    @jwt.expired_token_loader
    def _expirado(jwt_header, jwt_payload):
        return resposta_auth('Token expirado. Faça login novamente.', 'token_expired')

    @jwt.invalid_token_loader
    def _invalido(motivo):
        return resposta_auth('Token inválido. Faça login novamente.', 'token_invalid')

    @jwt.unauthorized_loader
    def _ausente(motivo):
        return resposta_auth('Token de acesso não fornecido.', 'missing_token')

    @jwt.revoked_token_loader
    def _revogado(jwt_header, jwt_payload):
        return resposta_auth('Token foi invalidado. Faça login novamente.', 'token_blacklisted')

    @jwt.user_lookup_error_loader
    def _usuario_inexistente(jwt_header, jwt_payload):
        return resposta_auth('Usuário não encontrado.', 'user_not_found')


def _init_scheduler(app):
    """Inicializa APScheduler para o histórico mensal."""
    try:
        from .scheduler import init_scheduler
        init_scheduler(app)
    except Exception as e:
        app.logger.warning(f"APScheduler não inicializado: {e}")


def _init_celery(app):
    """Conecta o Celery ao contexto do Flask."""
    try:
        from .celery_app import celery

        celery.conf.update(
            broker_url=app.config['CELERY_BROKER_URL'],
            result_backend=app.config['CELERY_RESULT_BACKEND'],
        )

        class ContextTask(celery.Task):
            """Garante que tasks rodem dentro do contexto Flask."""
            def __call__(self, *args, **kwargs):
                with app.app_context():
                    return self.run(*args, **kwargs)

        celery.Task = ContextTask
        app.extensions['celery'] = celery

    except Exception as e:
        app.logger.warning(f"Celery não inicializado: {e}")
