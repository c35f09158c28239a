"""
Aupus - Serviço de Propostas
Numeração, criação e mudança de status das UCs embutidas na proposta.
"""
import logging
from datetime import date, datetime, timezone

from sqlalchemy.orm.attributes import flag_modified

from ..errors import ErroValidacao, NaoEncontrado
from ..models.database import db, Proposta
from . import auditoria_service, configuracao_service, controle_service
from .status_troca import (
    UC_FECHADA, STATUS_PROPOSTA, normalizar_status_proposta, validar_status_proposta
)

logger = logging.getLogger(__name__)


def gerar_numero_proposta(ano=None):
    """Sequencial por ano: AAAA/NNN."""
    ano = ano or date.today().year
    numeros = db.session.query(Proposta.numero_proposta).filter(
        Proposta.numero_proposta.like(f'{ano}/%')
    ).all()
    ultimo = 0
    for (numero,) in numeros:
        try:
            ultimo = max(ultimo, int(numero.split('/', 1)[1]))
        except (IndexError, ValueError):
            continue
    return f"{ano}/{ultimo + 1:03d}"


def buscar(proposta_id):
    proposta = db.session.get(Proposta, proposta_id)
    if proposta is None or proposta.deleted_at is not None:
        raise NaoEncontrado('Proposta não encontrada')
    return proposta


def listar(ids_usuarios=None, busca=None):
    query = Proposta.query.filter(Proposta.deleted_at.is_(None))
    if ids_usuarios is not None:
        query = query.filter(db.or_(Proposta.usuario_id.in_(ids_usuarios), Proposta.consultor_id.in_(ids_usuarios)))
    if busca:
        query = query.filter(db.or_(
            Proposta.nome_cliente.ilike(f'%{busca}%'),
            Proposta.numero_proposta.ilike(f'%{busca}%'),
        ))
    return query.order_by(Proposta.created_at.desc(), Proposta.id.desc())


def _normalizar_ucs(ucs):
    normalizadas = []
    vistos = set()
    for uc in ucs or []:
        item = dict(uc)
        numero = str(item.get('numero_unidade') or '').strip()
        if not numero:
            raise ErroValidacao('Dados inválidos', errors={'unidades_consumidoras': 'UC sem número da unidade'})
        if numero in vistos:
            raise ErroValidacao('Dados inválidos', errors={'unidades_consumidoras': f"UC {numero} repetida"})
        vistos.add(numero)
        item['numero_unidade'] = numero
        item['status'] = normalizar_status_proposta(item.get('status'))
        if item['status'] not in STATUS_PROPOSTA:
            raise ErroValidacao('Status de UC inválido', errors={numero: item['status']})
        normalizadas.append(item)
    return normalizadas


def _data_proposta(valor):
    if not valor:
        return date.today()
    try:
        return date.fromisoformat(valor)
    except (TypeError, ValueError):
        raise ErroValidacao('Dados inválidos', errors={'data_proposta': 'Data inválida, use AAAA-MM-DD'})


def criar(dados, usuario):
    nome = (dados.get('nome_cliente') or '').strip()
    if not nome:
        raise ErroValidacao('Dados inválidos', errors={'nome_cliente': 'Nome do cliente é obrigatório'})

    numero = (dados.get('numero_proposta') or '').strip() or gerar_numero_proposta()
    if Proposta.query.filter_by(numero_proposta=numero).first() is not None:
        raise ErroValidacao('Número de proposta já utilizado', errors={'numero_proposta': numero})

    proposta = Proposta(
        numero_proposta=numero,
        data_proposta=_data_proposta(dados.get('data_proposta')),
        nome_cliente=nome,
        cpf_cnpj=dados.get('cpf_cnpj'),
        consultor_id=dados.get('consultor_id'),
        usuario_id=usuario.id,
        recorrencia=dados.get('recorrencia') or configuracao_service.obter_valor('recorrencia_padrao'),
        desconto_tarifa=dados.get('desconto_tarifa', configuracao_service.obter_valor('economia_padrao')),
        desconto_bandeira=dados.get('desconto_bandeira', configuracao_service.obter_valor('bandeira_padrao')),
        inflacao=dados.get('inflacao', 2),
        unidades_consumidoras=_normalizar_ucs(dados.get('unidades_consumidoras')),
        documentacao=dados.get('documentacao') or {},
        observacoes=dados.get('observacoes'),
    )
    db.session.add(proposta)
    db.session.flush()

    # UCs já fechadas na criação entram direto no clube
    for uc in proposta.unidades_consumidoras:
        if uc['status'] == UC_FECHADA:
            controle_service.fechar_uc(proposta, uc, usuario)

    auditoria_service.registrar('propostas', proposta.id, 'CRIADO', modulo='propostas',
                                dados_novos={'numero_proposta': numero, 'nome_cliente': nome})
    db.session.commit()
    logger.info(f"Proposta {numero} criada por {usuario.email}")
    return proposta


def alterar_status_uc(proposta, numero_unidade, novo_status, usuario):
    """
    Muda o status de uma UC da proposta.
    Fechada → entra (ou volta) no clube; saindo de Fechada → sai do clube.
    """
    if not validar_status_proposta(novo_status):
        raise ErroValidacao('Status inválido', errors={'status': novo_status})
    novo = normalizar_status_proposta(novo_status)

    ucs = proposta.unidades_normalizadas()
    alvo = next((uc for uc in ucs if uc.get('numero_unidade') == str(numero_unidade)), None)
    if alvo is None:
        raise NaoEncontrado(f"UC {numero_unidade} não encontrada na proposta")

    anterior = alvo['status']
    if anterior == novo:
        return proposta, None

    alvo['status'] = novo
    proposta.unidades_consumidoras = ucs
    flag_modified(proposta, 'unidades_consumidoras')

    controle = None
    if novo == UC_FECHADA:
        controle = controle_service.fechar_uc(proposta, dict(alvo, status_anterior=anterior), usuario)
    elif anterior == UC_FECHADA:
        controle = controle_service.remover_uc(proposta, numero_unidade, novo)

    auditoria_service.registrar_mudanca_status('propostas', proposta.id, anterior, novo,
                                               sub_acao='MUDANCA_STATUS_UC', modulo='propostas',
                                               observacoes=f"UC {numero_unidade}")
    db.session.commit()
    logger.info(f"Proposta {proposta.numero_proposta}: UC {numero_unidade} {anterior} → {novo}")
    return proposta, controle


def excluir(proposta, usuario):
    """Soft delete; entradas ativas do clube saem junto."""
    agora = datetime.now(timezone.utc)
    proposta.deleted_at = agora
    for controle in proposta.controles:
        if controle.deleted_at is None:
            controle.deleted_at = agora
            auditoria_service.registrar_remocao_controle(controle, UC_FECHADA, 'Proposta excluída')
    auditoria_service.registrar('propostas', proposta.id, 'EXCLUIDO', modulo='propostas', evento_critico=True)
    db.session.commit()
    logger.info(f"Proposta {proposta.numero_proposta} excluída por {usuario.email}")
