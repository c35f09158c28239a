"""
Aupus - Tasks Celery
Tasks:
  - gerar_historico_mes_anterior: snapshot mensal do Controle Clube (Beat, dia 1)
  - gerar_historico_mes: snapshot de um mês específico (AAAA-MM)
  - limpeza_auditoria: remove eventos de auditoria não críticos antigos
"""
import logging

from aupus.celery_app import celery

logger = logging.getLogger(__name__)


def _get_app():
    from aupus.app import create_app
    return create_app()


@celery.task(
    name='aupus.tasks.historico_tasks.gerar_historico_mes_anterior',
    bind=True,
    max_retries=3,
    default_retry_delay=600,
    acks_late=True,
)
def gerar_historico_mes_anterior(self):
    logger.info("=== HISTÓRICO MENSAL INICIADO ===")
    try:
        from aupus.services.historico_service import gerar_mes_anterior

        app = _get_app()
        with app.app_context():
            resumo = gerar_mes_anterior()
            return resumo.to_dict()
    except Exception as exc:
        logger.error(f"Erro no histórico mensal: {exc}", exc_info=True)
        raise self.retry(exc=exc)


@celery.task(name='aupus.tasks.historico_tasks.gerar_historico_mes')
def gerar_historico_mes(ano_mes):
    from aupus.services.historico_service import gerar_snapshot_mes

    app = _get_app()
    with app.app_context():
        return gerar_snapshot_mes(ano_mes).to_dict()


@celery.task(name='aupus.tasks.historico_tasks.limpeza_auditoria')
def limpeza_auditoria(dias=365):
    from aupus.services.auditoria_service import limpar_antigos

    app = _get_app()
    with app.app_context():
        removidos = limpar_antigos(dias)
    logger.info(f"Limpeza de auditoria: {removidos} removido(s)")
    return {'removidos': removidos}
