"""
Aupus - Script de gerenciamento
Uso:
    python -m aupus.tasks.manage status            → Verificar Redis/Celery e agendamentos
    python -m aupus.tasks.manage snapshot           → Gerar snapshot do mês anterior
    python -m aupus.tasks.manage snapshot 2025-08   → Gerar snapshot de um mês
    python -m aupus.tasks.manage retroativo         → Gerar todos os meses desde a primeira entrada
    python -m aupus.tasks.manage agendar            → Listar agendamentos do Beat
"""
import os
import sys

from dotenv import load_dotenv
load_dotenv()


def check_redis():
    """Verifica conexão com o Redis do cache compartilhado."""
    try:
        import redis
        url = os.environ.get('CACHE_URL', 'redis://localhost:6379/2')
        r = redis.Redis.from_url(url)
        r.ping()
        print(f"✅ Redis: conectado ({url.split('@')[-1]})")
        info = r.info('server')
        print(f"   Versão: {info.get('redis_version', '?')}")
        return True
    except Exception as e:
        print(f"❌ Redis: erro - {e}")
        return False


def check_celery():
    """Verifica se o Celery está configurado."""
    try:
        from aupus.celery_app import celery
        print("✅ Celery: configurado")
        print(f"   Broker: {celery.conf.broker_url}")
        print(f"   Backend: {celery.conf.result_backend}")
        return True
    except Exception as e:
        print(f"❌ Celery: {e}")
        return False


def show_schedule():
    """Mostra os agendamentos do Beat."""
    from aupus.celery_app import celery
    print("\n📅 Agendamentos do Celery Beat:")
    print("-" * 60)
    for name, entry in celery.conf.beat_schedule.items():
        print(f"\n  📌 {name}")
        print(f"     Task: {entry['task']}")
        print(f"     Schedule: {entry['schedule']}")
    print()


def run_snapshot(ano_mes=None):
    """Gera o snapshot de forma síncrona (sem Celery)."""
    from aupus.app import create_app
    from aupus.services.historico_service import gerar_snapshot_mes, gerar_mes_anterior

    app = create_app()
    with app.app_context():
        resumo = gerar_snapshot_mes(ano_mes) if ano_mes else gerar_mes_anterior()
        print(f"\n✅ Snapshot {resumo.ano_mes}: {resumo.to_dict()}")


def run_retroativo():
    from aupus.app import create_app
    from aupus.services.historico_service import gerar_retroativo

    app = create_app()
    with app.app_context():
        resumos = gerar_retroativo()
        for resumo in resumos:
            print(f"   {resumo.ano_mes}: {resumo.total_associados} entradas "
                  f"(+{resumo.novos_no_mes} / -{resumo.saidas_no_mes})")
        print(f"\n✅ {len(resumos)} mês(es) gerado(s)")


if __name__ == '__main__':
    args = sys.argv[1:]
    comando = args[0] if args else 'status'

    print("=" * 50)
    print("  Aupus — Gerenciamento")
    print("=" * 50)

    if comando == 'status':
        check_redis()
        check_celery()
        show_schedule()

    elif comando == 'snapshot':
        run_snapshot(args[1] if len(args) > 1 else None)

    elif comando == 'retroativo':
        run_retroativo()

    elif comando == 'agendar':
        show_schedule()

    else:
        print(f"Comando desconhecido: {comando}")
        print("Comandos: status, snapshot [AAAA-MM], retroativo, agendar")
