"""
Aupus - Serviço do Controle Clube
Entrada/saída de UCs no clube, calibragem, alocação de UG e status da troca.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import func

from ..errors import ErroValidacao, NaoEncontrado
from ..models.database import db, ControleClube, Proposta, UnidadeConsumidora
from . import auditoria_service, configuracao_service
from .status_troca import (
    STATUS_CANONICOS, STATUS_ESTEIRA, ALIASES_LEGADOS,
    transicionar, corrigir_status, registrar_assinatura, definir_data_titularidade,
    encontrar_status_invalidos, normalizar_status_troca, valores_armazenados,
)

logger = logging.getLogger(__name__)

CALIBRAGEM_MIN = Decimal('-50')
CALIBRAGEM_MAX = Decimal('100')


def _agora():
    return datetime.now(timezone.utc)


def buscar(controle_id, incluir_removidos=False):
    controle = db.session.get(ControleClube, controle_id)
    if controle is None or (controle.deleted_at is not None and not incluir_removidos):
        raise NaoEncontrado('Controle não encontrado')
    return controle


def listar(status=None, com_ug=None, busca=None, ids_usuarios=None):
    query = ControleClube.query.filter(ControleClube.deleted_at.is_(None))
    if status:
        query = query.filter(ControleClube.status_troca_bruto.in_(valores_armazenados(status)))
    if com_ug is True:
        query = query.filter(ControleClube.ug_id.isnot(None))
    elif com_ug is False:
        query = query.filter(ControleClube.ug_id.is_(None))
    if busca:
        query = query.filter(db.or_(
            ControleClube.nome_cliente.ilike(f'%{busca}%'),
            ControleClube.apelido_uc.ilike(f'%{busca}%'),
            ControleClube.cpf_cnpj.ilike(f'%{busca}%'),
        ))
    if ids_usuarios is not None:
        query = query.join(Proposta, ControleClube.proposta_id == Proposta.id).filter(
            db.or_(Proposta.usuario_id.in_(ids_usuarios), Proposta.consultor_id.in_(ids_usuarios))
        )
    return query.order_by(ControleClube.data_entrada_controle.desc(), ControleClube.id.desc())


# =========================================================
# ENTRADA E SAÍDA DO CLUBE
# =========================================================

def _obter_ou_criar_unidade(proposta, uc_dados, usuario):
    numero = str(uc_dados.get('numero_unidade') or '').strip()
    if not numero:
        raise ErroValidacao('UC sem número', errors={'numero_unidade': 'Obrigatório'})

    unidade = UnidadeConsumidora.query.filter(
        UnidadeConsumidora.numero_unidade == numero,
        UnidadeConsumidora.deleted_at.is_(None),
    ).first()
    if unidade is None:
        unidade = UnidadeConsumidora(
            numero_unidade=numero,
            apelido=uc_dados.get('apelido'),
            consumo_medio=uc_dados.get('consumo_medio'),
            ligacao=uc_dados.get('ligacao'),
            distribuidora=uc_dados.get('distribuidora'),
            gerador=False,
            proposta_id=proposta.id,
            usuario_id=usuario.id if usuario is not None else proposta.usuario_id,
        )
        db.session.add(unidade)
        db.session.flush()
    elif unidade.proposta_id is None:
        unidade.proposta_id = proposta.id
    return unidade


def fechar_uc(proposta, uc_dados, usuario=None, quando=None):
    """
    UC fechada na proposta: cria (ou reativa) a entrada do clube na Esteira.
    Commit fica com o chamador.
    """
    unidade = _obter_ou_criar_unidade(proposta, uc_dados, usuario)

    controle = ControleClube.query.filter_by(proposta_id=proposta.id, uc_id=unidade.id).first()
    if controle is not None and controle.deleted_at is not None:
        controle.deleted_at = None
        controle.data_entrada_controle = quando or _agora()
        registrar_assinatura(controle, quando)
        auditoria_service.registrar_reativacao_controle(controle, uc_dados.get('status_anterior'), 'Fechada')
        logger.info(f"Controle {controle.id} reativado (proposta {proposta.numero_proposta}, UC {unidade.numero_unidade})")
        return controle
    if controle is not None:
        return controle

    controle = ControleClube(
        proposta_id=proposta.id,
        uc_id=unidade.id,
        status_troca=STATUS_ESTEIRA,
        data_entrada_controle=quando or _agora(),
        nome_cliente=proposta.nome_cliente,
        apelido_uc=uc_dados.get('apelido') or unidade.apelido,
        cpf_cnpj=proposta.cpf_cnpj,
    )
    registrar_assinatura(controle, quando)
    db.session.add(controle)
    db.session.flush()
    auditoria_service.registrar('controle_clube', controle.id, 'CRIADO',
                                entidade_relacionada='propostas',
                                entidade_relacionada_id=str(proposta.id),
                                modulo='controle',
                                dados_novos={'status_troca': controle.status_troca})
    logger.info(f"UC {unidade.numero_unidade} entrou no clube (controle {controle.id})")
    return controle


def remover_uc(proposta, numero_unidade, status_novo):
    """UC deixou de estar Fechada: soft delete da entrada do clube."""
    controle = (ControleClube.query
                .join(UnidadeConsumidora, ControleClube.uc_id == UnidadeConsumidora.id)
                .filter(ControleClube.proposta_id == proposta.id,
                        UnidadeConsumidora.numero_unidade == str(numero_unidade),
                        ControleClube.deleted_at.is_(None))
                .first())
    if controle is None:
        return None
    controle.deleted_at = _agora()
    auditoria_service.registrar_remocao_controle(controle, 'Fechada', status_novo)
    logger.info(f"Controle {controle.id} removido: UC {numero_unidade} → {status_novo}")
    return controle


# =========================================================
# STATUS DA TROCA
# =========================================================

def mudar_status(controle, novo_status):
    anterior = transicionar(controle, novo_status)
    if anterior != controle.status_troca:
        auditoria_service.registrar_mudanca_status('controle_clube', controle.id, anterior,
                                                   controle.status_troca, modulo='controle')
    db.session.commit()
    return controle


def corrigir(controle, novo_status, usuario):
    anterior = corrigir_status(controle, novo_status)
    auditoria_service.registrar_mudanca_status(
        'controle_clube', controle.id, anterior, controle.status_troca,
        sub_acao='CORRECAO_ADMINISTRATIVA', modulo='controle', evento_critico=True,
        observacoes=f"Correção administrativa por {usuario.email}",
    )
    controle.anotar(f"Status corrigido de {anterior} para {controle.status_troca} por {usuario.nome}")
    db.session.commit()
    return controle


def alterar_data_titularidade(controle, nova_data):
    anterior = controle.data_titularidade
    definir_data_titularidade(controle, nova_data)
    auditoria_service.registrar('controle_clube', controle.id, 'ALTERADO', sub_acao='DATA_TITULARIDADE',
                                modulo='controle',
                                dados_anteriores={'data_titularidade': anterior.isoformat() if anterior else None},
                                dados_novos={'data_titularidade': controle.data_titularidade.isoformat()})
    db.session.commit()
    return controle


def validar_status():
    controles = ControleClube.query.filter(
        ControleClube.status_troca_bruto.not_in(STATUS_CANONICOS)
    ).all()
    legados = [c for c in controles if normalizar_status_troca(c.status_troca_bruto) in STATUS_CANONICOS]
    return {
        'invalidos': encontrar_status_invalidos(controles),
        'legados': len(legados),
    }


def normalizar_legados(usuario=None):
    """Regrava aliases legados com o valor canônico. Retorna quantos registros mudaram."""
    alterados = 0
    for legado, atual in ALIASES_LEGADOS.items():
        for controle in ControleClube.query.filter(ControleClube.status_troca_bruto == legado).all():
            controle.status_troca = atual
            alterados += 1
    if alterados:
        auditoria_service.registrar_evento('NORMALIZACAO_STATUS', f"{alterados} status legados normalizados",
                                           'controle', 'controle_clube', 'lote',
                                           usuario_id=usuario.id if usuario is not None else None)
    db.session.commit()
    logger.info(f"Normalização de status_troca: {alterados} registro(s)")
    return alterados


# =========================================================
# CALIBRAGEM
# =========================================================

def _percentual(valor, campo='calibragem'):
    try:
        valor = Decimal(str(valor))
    except (InvalidOperation, ValueError, TypeError):
        raise ErroValidacao('Percentual de calibragem inválido', errors={campo: valor})
    if not (CALIBRAGEM_MIN <= valor <= CALIBRAGEM_MAX):
        raise ErroValidacao('Percentual de calibragem deve estar entre -50% e 100%', errors={campo: str(valor)})
    return valor


def calcular_valor_calibrado(consumo_medio, calibragem):
    if consumo_medio is None or calibragem is None:
        return None
    consumo = Decimal(str(consumo_medio))
    return (consumo * (1 + Decimal(str(calibragem)) / 100)).quantize(Decimal('0.01'))


def recalcular(controle, calibragem_global=None):
    """valor_calibrado = consumo médio × (1 + calibragem/100); a individual prevalece."""
    if controle.calibragem_individual is not None:
        calibragem = controle.calibragem_individual
    else:
        calibragem = calibragem_global if calibragem_global is not None else configuracao_service.calibragem_global()
    consumo = controle.uc.consumo_medio if controle.uc is not None else None
    controle.valor_calibrado = calcular_valor_calibrado(consumo, calibragem)
    return controle.valor_calibrado


def definir_calibragem_individual(controle, valor):
    """valor None remove a calibragem individual (volta a usar a global)."""
    anterior = controle.calibragem_individual
    controle.calibragem_individual = None if valor in (None, '') else _percentual(valor, 'calibragem_individual')
    recalcular(controle)
    auditoria_service.registrar('controle_clube', controle.id, 'ALTERADO', sub_acao='CALIBRAGEM_INDIVIDUAL',
                                modulo='controle',
                                dados_anteriores={'calibragem_individual': float(anterior) if anterior is not None else None},
                                dados_novos={'calibragem_individual': float(controle.calibragem_individual)
                                             if controle.calibragem_individual is not None else None})
    db.session.commit()
    return controle


def aplicar_calibragem_global(valor, usuario=None):
    """Grava a calibragem global e recalcula quem não tem calibragem individual."""
    percentual = _percentual(valor, 'calibragem_global')
    _, anterior = configuracao_service.definir_valor('calibragem_global', str(percentual), usuario=usuario,
                                                     tipo='number', commit=False)

    afetados = ControleClube.query.filter(
        ControleClube.deleted_at.is_(None),
        ControleClube.calibragem_individual.is_(None),
    ).all()
    for controle in afetados:
        recalcular(controle, calibragem_global=percentual)

    auditoria_service.registrar_evento(
        'CALIBRAGEM_GLOBAL', f"Calibragem global alterada de {anterior} para {percentual}",
        'controle', 'configuracoes', 'calibragem_global', critico=True,
        dados_anteriores={'valor': anterior}, dados_novos={'valor': float(percentual)},
        metadados={'controles_recalculados': len(afetados)},
    )
    db.session.commit()
    logger.info(f"Calibragem global {anterior} → {percentual}: {len(afetados)} controle(s) recalculado(s)")
    return len(afetados)


# =========================================================
# UG
# =========================================================

def vincular_ug(controle, ug_id):
    ug = db.session.get(UnidadeConsumidora, ug_id)
    if ug is None or ug.deleted_at is not None:
        raise NaoEncontrado('UG não encontrada')
    if not ug.gerador:
        raise ErroValidacao('A unidade informada não é uma UG', errors={'ug_id': ug_id})

    anterior = controle.ug_id
    controle.ug_id = ug.id
    controle.data_alocacao_ug = _agora()
    auditoria_service.registrar('controle_clube', controle.id, 'ALTERADO', sub_acao='VINCULAR_UG',
                                entidade_relacionada='unidades_consumidoras',
                                entidade_relacionada_id=str(ug.id), modulo='controle',
                                dados_anteriores={'ug_id': anterior}, dados_novos={'ug_id': ug.id})
    db.session.commit()
    logger.info(f"Controle {controle.id} vinculado à UG {ug.nome_usina}")
    return controle


def desvincular_ug(controle):
    if controle.ug_id is None:
        raise ErroValidacao('Controle não possui UG vinculada')
    anterior = controle.ug_id
    controle.ug_id = None
    controle.data_alocacao_ug = None
    auditoria_service.registrar('controle_clube', controle.id, 'ALTERADO', sub_acao='DESVINCULAR_UG',
                                modulo='controle', dados_anteriores={'ug_id': anterior}, dados_novos={'ug_id': None})
    db.session.commit()
    return controle


# =========================================================
# ESTATÍSTICAS
# =========================================================

def estatisticas():
    linhas = (db.session.query(ControleClube.status_troca_bruto, func.count(ControleClube.id))
              .filter(ControleClube.deleted_at.is_(None))
              .group_by(ControleClube.status_troca_bruto)
              .all())
    por_status = {status: 0 for status in STATUS_CANONICOS}
    invalidos = 0
    for bruto, total in linhas:
        status = normalizar_status_troca(bruto)
        if status in por_status:
            por_status[status] += total
        else:
            invalidos += total

    ativos = ControleClube.query.filter(ControleClube.deleted_at.is_(None))
    com_ug = ativos.filter(ControleClube.ug_id.isnot(None)).count()
    total = ativos.count()
    return {
        'total': total,
        'por_status': por_status,
        'status_invalidos': invalidos,
        'com_ug': com_ug,
        'sem_ug': total - com_ug,
    }
