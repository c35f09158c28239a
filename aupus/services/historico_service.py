"""
Aupus - Histórico mensal do Controle Clube
Foto mensal de todas as entradas ativas em algum momento do mês.
Gerar de novo um mês substitui a foto anterior.
"""
import calendar
import csv
import io
import logging
from datetime import date, datetime, time, timezone

from ..errors import ErroValidacao, NaoEncontrado
from ..models.database import (
    db, ControleClube, HistoricoMensalResumo, HistoricoMensalAssociado
)
from .status_troca import STATUS_ESTEIRA, STATUS_EM_ANDAMENTO, STATUS_ASSOCIADO

logger = logging.getLogger(__name__)


def _naive(valor):
    """Datas do SQLite voltam sem tz; compara tudo em UTC sem tzinfo."""
    if valor is None:
        return None
    if isinstance(valor, datetime):
        if valor.tzinfo is not None:
            valor = valor.astimezone(timezone.utc).replace(tzinfo=None)
        return valor
    return datetime.combine(valor, time.min)


def limites_do_mes(ano_mes):
    try:
        ano, mes = (int(p) for p in ano_mes.split('-'))
        primeiro = datetime(ano, mes, 1)
    except (ValueError, AttributeError):
        raise ErroValidacao('Mês inválido, use AAAA-MM', errors={'ano_mes': ano_mes})
    ultimo_dia = calendar.monthrange(ano, mes)[1]
    return primeiro, datetime.combine(date(ano, mes, ultimo_dia), time.max)


def mes_anterior(referencia=None):
    referencia = referencia or date.today()
    if referencia.month == 1:
        return f"{referencia.year - 1}-12"
    return f"{referencia.year}-{referencia.month - 1:02d}"


def _data_entrada(controle):
    return _naive(controle.data_assinatura or controle.data_entrada_controle)


def _ativos_no_mes(inicio, fim):
    entrada = db.func.coalesce(ControleClube.data_assinatura, ControleClube.data_entrada_controle)
    ativos = ControleClube.query.filter(
        entrada.isnot(None),
        entrada <= fim,
        db.or_(ControleClube.deleted_at.is_(None), ControleClube.deleted_at >= inicio),
    ).all()
    ativos.sort(key=lambda c: ((c.nome_cliente or '').lower(), c.uc.numero_unidade if c.uc else ''))
    return ativos


def _item(controle, ano_mes, resumo):
    proposta = controle.proposta
    uc = controle.uc
    ug = controle.ug
    descontos = controle.descontos_efetivos()
    return HistoricoMensalAssociado(
        ano_mes=ano_mes,
        resumo=resumo,
        controle_id=controle.id,
        proposta_id=controle.proposta_id,
        uc_id=controle.uc_id,
        ug_id=controle.ug_id,
        nome_cliente=controle.nome_cliente,
        numero_uc=uc.numero_unidade if uc else None,
        numero_proposta=proposta.numero_proposta if proposta else None,
        apelido_uc=controle.apelido_uc,
        status_troca=controle.status_troca,
        ug_nome=(ug.nome_usina or ug.apelido) if ug else None,
        consumo_medio=uc.consumo_medio if uc else None,
        consumo_calibrado=controle.valor_calibrado,
        calibragem=controle.calibragem_individual,
        desconto_tarifa=descontos['desconto_tarifa'],
        desconto_bandeira=descontos['desconto_bandeira'],
        consultor=proposta.consultor.nome if proposta and proposta.consultor else None,
        data_entrada_controle=controle.data_entrada_controle,
        data_assinatura=controle.data_assinatura,
        data_em_andamento=controle.data_em_andamento,
        data_titularidade=controle.data_titularidade,
        data_alocacao_ug=controle.data_alocacao_ug,
    )


def gerar_snapshot_mes(ano_mes):
    """Gera (ou regera) a foto do mês AAAA-MM. Retorna o resumo."""
    inicio, fim = limites_do_mes(ano_mes)
    registros = _ativos_no_mes(inicio, fim)

    totais = {
        'novos_no_mes': 0,
        'saidas_no_mes': 0,
        STATUS_ESTEIRA: 0,
        STATUS_EM_ANDAMENTO: 0,
        STATUS_ASSOCIADO: 0,
        'com_ug': 0,
    }
    for controle in registros:
        if inicio <= _data_entrada(controle) <= fim:
            totais['novos_no_mes'] += 1
        saida = _naive(controle.deleted_at)
        if saida is not None and inicio <= saida <= fim:
            totais['saidas_no_mes'] += 1
        if controle.status_troca in totais:
            totais[controle.status_troca] += 1
        if controle.ug_id:
            totais['com_ug'] += 1

    existente = HistoricoMensalResumo.query.filter_by(ano_mes=ano_mes).first()
    if existente is not None:
        HistoricoMensalAssociado.query.filter_by(resumo_id=existente.id).delete(synchronize_session=False)
        db.session.delete(existente)
        db.session.flush()

    resumo = HistoricoMensalResumo(
        ano_mes=ano_mes,
        total_associados=len(registros),
        novos_no_mes=totais['novos_no_mes'],
        saidas_no_mes=totais['saidas_no_mes'],
        total_esteira=totais[STATUS_ESTEIRA],
        total_em_andamento=totais[STATUS_EM_ANDAMENTO],
        total_associado=totais[STATUS_ASSOCIADO],
        total_com_ug=totais['com_ug'],
        total_sem_ug=len(registros) - totais['com_ug'],
    )
    db.session.add(resumo)
    for controle in registros:
        db.session.add(_item(controle, ano_mes, resumo))
    db.session.commit()

    logger.info(f"Snapshot {ano_mes} gerado: total={len(registros)} novos={resumo.novos_no_mes} "
                f"saidas={resumo.saidas_no_mes}")
    return resumo


def gerar_mes_anterior(referencia=None):
    return gerar_snapshot_mes(mes_anterior(referencia))


def gerar_retroativo(hoje=None):
    """Do mês da primeira entrada até o mês atual (parcial)."""
    datas = [_data_entrada(c) for c in ControleClube.query.all()]
    datas = [d for d in datas if d is not None]
    if not datas:
        raise NaoEncontrado('Nenhum dado encontrado no controle')

    hoje = hoje or date.today()
    primeira = min(datas)
    ano, mes = primeira.year, primeira.month
    resumos = []
    while (ano, mes) <= (hoje.year, hoje.month):
        resumos.append(gerar_snapshot_mes(f"{ano}-{mes:02d}"))
        ano, mes = (ano + 1, 1) if mes == 12 else (ano, mes + 1)
    logger.info(f"Histórico retroativo: {len(resumos)} mês(es) gerado(s)")
    return resumos


def buscar_mes(ano_mes):
    limites_do_mes(ano_mes)
    resumo = HistoricoMensalResumo.query.filter_by(ano_mes=ano_mes).first()
    if resumo is None:
        raise NaoEncontrado(f"Histórico de {ano_mes} não encontrado")
    return resumo


COLUNAS_CSV = (
    ('Cliente', 'nome_cliente'),
    ('UC', 'numero_uc'),
    ('Proposta', 'numero_proposta'),
    ('Apelido', 'apelido_uc'),
    ('Status', 'status_troca'),
    ('UG', 'ug_nome'),
    ('Consumo Médio', 'consumo_medio'),
    ('Consumo Calibrado', 'consumo_calibrado'),
    ('Desconto Tarifa', 'desconto_tarifa'),
    ('Desconto Bandeira', 'desconto_bandeira'),
    ('Consultor', 'consultor'),
    ('Data Assinatura', 'data_assinatura'),
    ('Data Titularidade', 'data_titularidade'),
)


def _celula(valor):
    if valor is None:
        return ''
    if isinstance(valor, datetime):
        return valor.strftime('%d/%m/%Y %H:%M')
    if isinstance(valor, date):
        return valor.strftime('%d/%m/%Y')
    return valor


def exportar_csv(ano_mes):
    """CSV (UTF-8 com BOM, para o Excel) com os associados da foto do mês."""
    resumo = buscar_mes(ano_mes)
    itens = HistoricoMensalAssociado.query.filter_by(resumo_id=resumo.id).order_by(
        HistoricoMensalAssociado.nome_cliente
    ).all()

    saida = io.StringIO()
    saida.write('\ufeff')
    writer = csv.writer(saida)
    writer.writerow([titulo for titulo, _ in COLUNAS_CSV])
    for item in itens:
        writer.writerow([_celula(getattr(item, campo)) for _, campo in COLUNAS_CSV])

    logger.info(f"Histórico {ano_mes} exportado: {len(itens)} linha(s)")
    return saida.getvalue()
