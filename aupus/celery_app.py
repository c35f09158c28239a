import os
from dotenv import load_dotenv
load_dotenv()

"""
Aupus - Configuração do Celery
Broker: Redis (localhost:6379/0)
"""
from celery import Celery
from celery.schedules import crontab


def make_celery(app=None):
    """
    Cria instância do Celery integrada ao Flask.
    Pode ser usada com ou sem o app Flask.
    """
    broker = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
    backend = os.environ.get('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')

    celery = Celery(
        'aupus',
        broker=broker,
        backend=backend,
        include=['aupus.tasks.historico_tasks']
    )

    celery.conf.update(
        # Serialização
        task_serializer='json',
        accept_content=['json'],
        result_serializer='json',

        # Timezone (Brasília)
        timezone='America/Sao_Paulo',
        enable_utc=True,

        # Resultados expiram em 24h
        result_expires=86400,

        task_acks_late=True,
        worker_prefetch_multiplier=1,

        # Limites de tempo por task
        task_soft_time_limit=300,
        task_time_limit=600,

        beat_schedule={
            # Snapshot do mês anterior (dia 1, 02:00)
            'historico-mensal': {
                'task': 'aupus.tasks.historico_tasks.gerar_historico_mes_anterior',
                'schedule': crontab(minute=0, hour=2, day_of_month=1),
                'kwargs': {},
                'options': {'queue': 'default'},
            },

            # Limpeza da auditoria não crítica (domingo 3h)
            'limpeza-auditoria-semanal': {
                'task': 'aupus.tasks.historico_tasks.limpeza_auditoria',
                'schedule': crontab(minute=0, hour=3, day_of_week='sunday'),
                'kwargs': {'dias': 365},
                'options': {'queue': 'default'},
            },
        },

        task_routes={
            'aupus.tasks.historico_tasks.*': {'queue': 'default'},
        },
    )

    # Integrar com Flask (se app fornecido)
    if app:
        class ContextTask(celery.Task):
            """Garante que tasks rodem dentro do contexto do Flask."""
            def __call__(self, *args, **kwargs):
                with app.app_context():
                    return self.run(*args, **kwargs)

        celery.Task = ContextTask

    return celery


# Instância global (usada pelo worker e beat)
celery = make_celery()
