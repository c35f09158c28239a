"""
Aupus - Agendador de tarefas
Usa APScheduler dentro do próprio Flask para o histórico mensal.
"""
import logging
import os

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(
    timezone='America/Sao_Paulo',
    job_defaults={
        'coalesce': True,          # Se perdeu execuções, roda só 1
        'max_instances': 1,         # Nunca roda 2 instâncias da mesma task
        'misfire_grace_time': 6 * 3600,
    },
)


def init_scheduler(app):
    """
    Inicializa o scheduler dentro do contexto do Flask.
    Chamado uma única vez na criação do app.
    """
    # Evitar dupla inicialização com o reloader do modo debug
    if os.environ.get('WERKZEUG_RUN_MAIN') == 'true' or not app.debug:
        registrar_jobs(app)
        if not scheduler.running:
            scheduler.start()
        logger.info("=== APScheduler iniciado com sucesso ===")
    else:
        logger.info("APScheduler: aguardando reloader (debug mode)")


def registrar_jobs(app):
    """Registra todos os jobs agendados."""

    # ----------------------------------------------------------
    # Snapshot do mês anterior: todo dia 1 às 02:00
    # ----------------------------------------------------------
    scheduler.add_job(
        func=_job_historico_mensal,
        trigger=CronTrigger(
            day=app.config.get('HISTORICO_MENSAL_DIA', 1),
            hour=app.config.get('HISTORICO_MENSAL_HORA', 2),
            minute=0,
        ),
        id='historico_mensal',
        name='Snapshot mensal do Controle Clube',
        kwargs={'app': app},
        replace_existing=True,
    )

    logger.info(f"Jobs registrados: {[j.id for j in scheduler.get_jobs()]}")


def _job_historico_mensal(app):
    """Gera o snapshot do mês anterior dentro do contexto Flask."""
    with app.app_context():
        try:
            from .services.historico_service import gerar_mes_anterior

            resumo = gerar_mes_anterior()
            logger.info(f"=== HISTÓRICO MENSAL {resumo.ano_mes} CONCLUÍDO: {resumo.total_associados} entradas ===")
            return resumo.to_dict()

        except Exception as e:
            logger.error(f"Erro no snapshot mensal automático: {e}", exc_info=True)
            return {'erro': str(e)}
