"""
Aupus - Trilha de auditoria
Falha ao auditar nunca derruba a operação principal.
"""
import logging
from datetime import datetime, timedelta, timezone

from flask import g, has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from ..models.database import db, Auditoria

logger = logging.getLogger(__name__)

ACOES = ('CRIADO', 'ALTERADO', 'REMOVIDO', 'REATIVADO', 'EXCLUIDO')


def _contexto_requisicao():
    if not has_request_context():
        return None, None, None
    usuario = g.get('usuario_atual')
    ip = request.headers.get('X-Forwarded-For', request.remote_addr or '').split(',')[0].strip()
    return (usuario.id if usuario is not None else None), ip or None, request.user_agent.string[:500]


def registrar(entidade, entidade_id, acao, **opcoes):
    """
    Grava uma linha de auditoria na sessão atual (commit fica com o chamador).
    Retorna a entrada ou None se não foi possível auditar.
    """
    try:
        usuario_id, ip, user_agent = _contexto_requisicao()
        entrada = Auditoria(
            entidade=entidade,
            entidade_id=str(entidade_id),
            acao=acao.upper(),
            usuario_id=opcoes.pop('usuario_id', usuario_id),
            ip_address=ip,
            user_agent=user_agent,
            data_acao=datetime.now(timezone.utc),
            **opcoes,
        )
        db.session.add(entrada)
        logger.info(f"Auditoria: {entidade}#{entidade_id} {acao.upper()} por {usuario_id or 'sistema'}")
        return entrada
    except (SQLAlchemyError, TypeError) as e:
        logger.warning(f"Erro ao registrar auditoria {entidade}#{entidade_id} {acao}: {e}")
        return None


def registrar_mudanca_status(entidade, entidade_id, anterior, novo, **opcoes):
    return registrar(
        entidade, entidade_id, 'ALTERADO',
        sub_acao=opcoes.pop('sub_acao', 'MUDANCA_STATUS'),
        dados_anteriores={'status': anterior},
        dados_novos={'status': novo},
        metadados={
            'status_anterior': anterior,
            'status_novo': novo,
            'timestamp': datetime.now(timezone.utc).isoformat(),
        },
        **opcoes,
    )


def registrar_remocao_controle(controle, status_anterior, status_novo):
    return registrar(
        'controle_clube', controle.id, 'REMOVIDO',
        entidade_relacionada='propostas',
        entidade_relacionada_id=str(controle.proposta_id),
        sub_acao='SOFT_DELETE_POR_MUDANCA_STATUS',
        modulo='controle',
        dados_anteriores={'status': status_anterior},
        dados_novos={'status': status_novo},
        metadados={
            'proposta_id': controle.proposta_id,
            'uc_id': controle.uc_id,
            'motivo': f"Mudança de status de {status_anterior} para {status_novo}",
        },
    )


def registrar_reativacao_controle(controle, status_anterior, status_novo):
    return registrar(
        'controle_clube', controle.id, 'REATIVADO',
        entidade_relacionada='propostas',
        entidade_relacionada_id=str(controle.proposta_id),
        sub_acao='REMOCAO_SOFT_DELETE',
        modulo='controle',
        dados_anteriores={'status': status_anterior},
        dados_novos={'status': status_novo},
        metadados={
            'proposta_id': controle.proposta_id,
            'uc_id': controle.uc_id,
            'motivo': f"Mudança de status de {status_anterior} para {status_novo}",
        },
    )


def registrar_evento(evento_tipo, descricao, modulo, entidade, entidade_id, critico=False, **opcoes):
    """Evento de negócio (ex.: calibragem global, toggle de usuário)."""
    return registrar(
        entidade, entidade_id, opcoes.pop('acao', 'ALTERADO'),
        evento_tipo=evento_tipo,
        descricao_evento=descricao,
        modulo=modulo,
        evento_critico=critico,
        **opcoes,
    )


def filtrar(entidade=None, entidade_id=None, acao=None, modulo=None, critico=None):
    query = Auditoria.query
    if entidade:
        query = query.filter(Auditoria.entidade == entidade)
    if entidade_id:
        query = query.filter(Auditoria.entidade_id == str(entidade_id))
    if acao:
        query = query.filter(Auditoria.acao == acao.upper())
    if modulo:
        query = query.filter(Auditoria.modulo == modulo)
    if critico is not None:
        query = query.filter(Auditoria.evento_critico.is_(bool(critico)))
    return query.order_by(Auditoria.data_acao.desc(), Auditoria.id.desc())


def limpar_antigos(dias):
    """Remove eventos não críticos mais antigos que `dias`. Retorna quantos."""
    limite = datetime.now(timezone.utc) - timedelta(days=dias)
    removidos = Auditoria.query.filter(
        Auditoria.evento_critico.is_(False),
        Auditoria.data_acao < limite,
    ).delete(synchronize_session=False)
    db.session.commit()
    logger.info(f"Auditoria: {removidos} evento(s) não crítico(s) anteriores a {limite.date()} removido(s)")
    return removidos
