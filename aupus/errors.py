"""
Aupus - Erros da aplicação e handlers globais
Toda resposta de erro da API é JSON: {success: false, message, error_type, ...}
"""
import logging
import os
import traceback

from flask import jsonify, request, g
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException, NotFound, MethodNotAllowed

logger = logging.getLogger(__name__)


class AupusError(Exception):
    """Base dos erros classificados da aplicação."""
    status_code = 500
    error_type = 'server_error'

    def __init__(self, message=None, errors=None, status_code=None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__
        self.errors = errors
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        data = {
            'success': False,
            'message': self.message,
            'error_type': self.error_type,
        }
        if self.errors:
            data['errors'] = self.errors
        return data


class ErroValidacao(AupusError):
    """Dados inválidos."""
    status_code = 422
    error_type = 'validation_error'


class TransicaoInvalida(AupusError):
    """Transição de status não permitida."""
    status_code = 422
    error_type = 'invalid_transition'


class NaoEncontrado(AupusError):
    """Registro não encontrado."""
    status_code = 404
    error_type = 'not_found'


class AcessoNegado(AupusError):
    """Acesso negado. Permissão insuficiente."""
    status_code = 403
    error_type = 'forbidden'


class ErroUpload(AupusError):
    """Erro no upload do arquivo."""
    error_type = 'upload_error'


class ErroBancoDados(AupusError):
    """Erro interno do banco de dados."""
    error_type = 'database_error'


def resposta_erro(message, status, **extras):
    corpo = {'success': False, 'message': message}
    corpo.update(extras)
    return jsonify(corpo), status


def resposta_auth(message, error_type, status=401):
    """Corpo padrão das falhas de autenticação."""
    return resposta_erro(message, status, error_type=error_type, requires_login=True)


def ip_cliente():
    return request.headers.get('X-Forwarded-For', request.remote_addr or '').split(',')[0].strip()


def _ator():
    # id capturado na autenticação; o objeto pode estar expirado após falha de flush
    return g.get('usuario_id', 'guest')


def _classificar_por_mensagem(e):
    """
    Último recurso para exceções de terceiros não classificadas.
    Melhor esforço: depende do texto da mensagem.
    """
    mensagem = str(e)
    if 'upload' in mensagem or 'file' in mensagem or 'storage' in mensagem:
        return ErroUpload(f"Erro no upload do arquivo: {mensagem}")
    if 'Database' in type(e).__name__ or 'database' in mensagem or 'SQL' in mensagem:
        return ErroBancoDados()
    return None


def _status_da_excecao(e):
    for attr in ('status_code', 'code'):
        valor = getattr(e, attr, None)
        if isinstance(valor, int) and 100 <= valor < 600:
            return valor
    return 500


def registrar_handlers(app):
    """Registra os handlers de erro da API no app Flask."""

    @app.errorhandler(AupusError)
    def _aupus_error(e):
        logger.warning(
            f"API {e.error_type}: {e.message} | url={request.url} method={request.method} "
            f"ip={ip_cliente()} user={_ator()}"
        )
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(SQLAlchemyError)
    def _sqlalchemy_error(e):
        from .models.database import db
        db.session.rollback()
        logger.error(f"Erro de banco: {e} | url={request.url} user={_ator()}", exc_info=True)
        return jsonify(ErroBancoDados().to_dict()), 500

    @app.errorhandler(NotFound)
    def _rota_nao_encontrada(e):
        return resposta_erro('Rota não encontrada.', 404, error_type='route_not_found')

    @app.errorhandler(MethodNotAllowed)
    def _metodo_nao_permitido(e):
        return resposta_erro('Método HTTP não permitido.', 405, error_type='method_not_allowed',
                             allowed_methods=list(e.valid_methods or []))

    @app.errorhandler(HTTPException)
    def _http_exception(e):
        return resposta_erro(e.description or e.name, e.code or 500, error_type='http_error')

    @app.errorhandler(Exception)
    def _erro_generico(e):
        logger.error(
            f"API Exception {type(e).__name__}: {e} | url={request.url} method={request.method} "
            f"ip={ip_cliente()} user_agent={request.user_agent.string} user={_ator()}",
            exc_info=True,
        )

        classificado = _classificar_por_mensagem(e)
        if classificado is not None:
            return jsonify(classificado.to_dict()), classificado.status_code

        debug = bool(app.debug)
        debug_info = None
        if debug:
            frames = traceback.extract_tb(e.__traceback__)
            debug_info = {
                'exception': type(e).__name__,
                'file': os.path.basename(frames[-1].filename) if frames else None,
                'line': frames[-1].lineno if frames else None,
            }
        return jsonify({
            'success': False,
            'message': str(e) if debug else 'Erro interno do servidor.',
            'error_type': 'server_error',
            'debug_info': debug_info,
        }), _status_da_excecao(e)
