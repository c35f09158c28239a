"""
Aupus - Unidades consumidoras e usinas geradoras (UG)
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from ..errors import ErroValidacao, NaoEncontrado
from . import configuracao_service
from ..models.database import db, UnidadeConsumidora, ControleClube

logger = logging.getLogger(__name__)

CAMPOS_EDITAVEIS = (
    'numero_unidade', 'apelido', 'consumo_medio', 'ligacao', 'distribuidora',
    'gerador', 'nome_usina', 'potencia_cc', 'potencia_ca', 'fator_capacidade',
    'logradouro', 'numero', 'bairro', 'cidade', 'estado', 'cep',
    'email_fatura', 'telefone_fatura', 'proposta_id',
)
CAMPOS_NUMERICOS = ('consumo_medio', 'potencia_cc', 'potencia_ca', 'fator_capacidade')

VERDADEIROS = ('1', 'true', 'sim', 'yes', 'on')
FALSOS = ('0', 'false', 'nao', 'não', 'no', 'off', '')


def _decimal(campo, valor):
    if valor in (None, ''):
        return None
    try:
        return Decimal(str(valor))
    except (InvalidOperation, ValueError):
        raise ErroValidacao('Dados inválidos', errors={campo: 'Valor numérico inválido'})


def _booleano(campo, valor):
    if isinstance(valor, str):
        texto = valor.strip().lower()
        if texto in VERDADEIROS:
            return True
        if texto in FALSOS:
            return False
        raise ErroValidacao('Dados inválidos', errors={campo: 'Valor booleano inválido'})
    return bool(valor)


def buscar(unidade_id):
    unidade = db.session.get(UnidadeConsumidora, unidade_id)
    if unidade is None or unidade.deleted_at is not None:
        raise NaoEncontrado('Unidade não encontrada')
    return unidade


def _validar(unidade):
    erros = unidade.erros_validacao()
    if not unidade.numero_unidade:
        erros['numero_unidade'] = 'Número da unidade é obrigatório'
    if unidade.fator_capacidade is not None and not (0 < unidade.fator_capacidade <= 100):
        erros['fator_capacidade'] = 'Fator de capacidade deve estar entre 0 e 100'

    # a unidade pode estar alterada na sessão; o índice único não pode ser acionado antes da checagem
    with db.session.no_autoflush:
        duplicada = UnidadeConsumidora.query.filter(
            UnidadeConsumidora.numero_unidade == unidade.numero_unidade,
            UnidadeConsumidora.deleted_at.is_(None),
            UnidadeConsumidora.id != unidade.id if unidade.id else db.true(),
        ).first()
    if duplicada is not None:
        erros['numero_unidade'] = 'Já existe uma unidade ativa com este número'

    if erros:
        raise ErroValidacao('Dados inválidos', errors=erros)


def aplicar_dados(unidade, dados):
    for campo in CAMPOS_EDITAVEIS:
        if campo not in dados:
            continue
        valor = dados[campo]
        if campo in CAMPOS_NUMERICOS:
            valor = _decimal(campo, valor)
        elif campo == 'gerador':
            valor = _booleano(campo, valor)
        elif isinstance(valor, str):
            valor = valor.strip() or None
        setattr(unidade, campo, valor)
    return unidade


def criar(dados, usuario=None):
    unidade = aplicar_dados(UnidadeConsumidora(gerador=False), dados)
    unidade.usuario_id = usuario.id if usuario is not None else None
    _validar(unidade)
    unidade.atualizar_capacidade()
    db.session.add(unidade)
    db.session.commit()
    logger.info(f"Unidade {unidade.numero_unidade} criada (gerador={unidade.gerador})")
    return unidade


def atualizar(unidade, dados):
    """
    Atualiza a unidade. Desligar o flag de gerador de uma UG passa pela
    mesma regra de reverter_para_uc (sem controles ativos vinculados) e
    limpa os dados da usina.
    """
    dados = dict(dados or {})
    if 'gerador' in dados:
        dados['gerador'] = _booleano('gerador', dados['gerador'])
        if unidade.gerador and not dados['gerador']:
            _exigir_sem_vinculos(unidade)
            for campo in ('nome_usina', 'potencia_cc', 'fator_capacidade'):
                dados[campo] = None

    try:
        aplicar_dados(unidade, dados)
        unidade.atualizar_capacidade()
        _validar(unidade)
    except ErroValidacao:
        db.session.rollback()
        raise
    db.session.commit()
    return unidade


def converter_para_ug(unidade, dados):
    """UC → UG: exige nome da usina, potência CC e fator de capacidade."""
    if unidade.gerador:
        raise ErroValidacao('Esta unidade já é uma UG')

    erros = {}
    nome = (dados.get('nome_usina') or '').strip()
    if len(nome) < 3:
        erros['nome_usina'] = 'Nome da usina é obrigatório'
    potencia = _decimal('potencia_cc', dados.get('potencia_cc'))
    if potencia is None or potencia < Decimal('0.1'):
        erros['potencia_cc'] = 'Potência CC é obrigatória'
    fator = _decimal('fator_capacidade', dados.get('fator_capacidade'))
    if fator is None or not (1 <= fator <= 100):
        erros['fator_capacidade'] = 'Fator de capacidade deve estar entre 1 e 100'
    if erros:
        raise ErroValidacao('Dados inválidos', errors=erros)

    unidade.gerador = True
    unidade.nome_usina = nome
    unidade.potencia_cc = potencia
    unidade.fator_capacidade = fator
    unidade.atualizar_capacidade()
    db.session.commit()
    logger.info(f"UC {unidade.id} convertida para UG '{nome}' ({unidade.capacidade_calculada} kWh)")
    return unidade


def _exigir_sem_vinculos(ug):
    vinculados = ControleClube.query.filter(
        ControleClube.ug_id == ug.id,
        ControleClube.deleted_at.is_(None),
    ).count()
    if vinculados:
        raise ErroValidacao('UG não pode ser revertida pois está vinculada a controles ativos',
                            errors={'controles_ativos': vinculados})


def reverter_para_uc(unidade):
    if not unidade.gerador:
        raise ErroValidacao('Esta unidade não é uma UG')

    _exigir_sem_vinculos(unidade)

    nome_anterior = unidade.nome_usina
    unidade.gerador = False
    unidade.nome_usina = None
    unidade.potencia_cc = None
    unidade.fator_capacidade = None
    unidade.atualizar_capacidade()
    db.session.commit()
    logger.info(f"UG {unidade.id} ('{nome_anterior}') revertida para UC")
    return unidade


def excluir(unidade, usuario=None):
    unidade.deleted_at = datetime.now(timezone.utc)
    unidade.deleted_by = usuario.id if usuario is not None else None
    db.session.commit()


def _alocacao_por_ug(calibragem):
    """{ug_id: (ucs atribuídas, consumo calibrado somado)} para os controles ativos."""
    linhas = db.session.query(
        ControleClube.ug_id,
        db.func.count(ControleClube.id),
        db.func.coalesce(db.func.sum(UnidadeConsumidora.consumo_medio), 0),
    ).join(UnidadeConsumidora, ControleClube.uc_id == UnidadeConsumidora.id).filter(
        ControleClube.ug_id.isnot(None),
        ControleClube.deleted_at.is_(None),
    ).group_by(ControleClube.ug_id).all()

    fator = 1 + calibragem / 100
    return {ug_id: (total, round(float(consumo) * fator, 2)) for ug_id, total, consumo in linhas}


def listar_ugs():
    """UGs ativas com a alocação corrente (UCs atribuídas e consumo calibrado atribuído)."""
    ugs = UnidadeConsumidora.query.filter(
        UnidadeConsumidora.gerador.is_(True),
        UnidadeConsumidora.deleted_at.is_(None),
    ).order_by(UnidadeConsumidora.nome_usina).all()
    alocacao = _alocacao_por_ug(configuracao_service.calibragem_global())

    resultado = []
    for ug in ugs:
        ucs, consumo = alocacao.get(ug.id, (0, 0.0))
        item = ug.to_dict()
        item['ucs_atribuidas'] = ucs
        item['media_consumo_atribuido'] = consumo
        resultado.append(item)
    return resultado


def estatisticas_ugs():
    ugs = listar_ugs()
    total = len(ugs)
    consumo = sum(ug['media_consumo_atribuido'] for ug in ugs)
    return {
        'total': total,
        'capacidade_total': round(sum(ug['capacidade_calculada'] or 0 for ug in ugs), 2),
        'potencia_total': round(sum(ug['potencia_cc'] or 0 for ug in ugs), 2),
        'ucs_atribuidas': sum(ug['ucs_atribuidas'] for ug in ugs),
        'media_consumo': round(consumo / total, 2) if total else 0.0,
    }
