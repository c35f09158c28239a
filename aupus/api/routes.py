"""
Aupus - Rotas da API REST
"""
import logging

from flask import Blueprint, Response, request, jsonify, current_app, g

from ..errors import ErroValidacao, NaoEncontrado, AcessoNegado, resposta_auth
from ..middleware import protegido, rate_limit, exigir_roles, extrair_token
from ..models.database import (
    db, Usuario, ROLES, Configuracao, UnidadeConsumidora, HistoricoMensalResumo
)
from ..services import (
    auditoria_service, configuracao_service, controle_service,
    historico_service, proposta_service, unidade_service,
)
from ..services.token_service import ErroToken, get_token_store

logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__)


def _dados():
    return request.get_json(silent=True) or {}


def _paginar(query, serializar=None):
    pagina = request.args.get('pagina', 1, type=int)
    por_pagina = request.args.get('por_pagina', current_app.config.get('DEFAULT_PAGE_SIZE', 20), type=int)
    paginacao = query.paginate(page=pagina, per_page=min(por_pagina, current_app.config.get('MAX_PAGE_SIZE', 100)),
                               error_out=False)
    serializar = serializar or (lambda item: item.to_dict())
    return jsonify({
        'success': True,
        'data': [serializar(item) for item in paginacao.items],
        'total': paginacao.total,
        'paginas': paginacao.pages,
        'pagina_atual': paginacao.page,
    })


def _ok(data=None, message=None, status=200):
    corpo = {'success': True}
    if message:
        corpo['message'] = message
    if data is not None:
        corpo['data'] = data
    return jsonify(corpo), status


def _ids_visiveis(usuario):
    """None = sem filtro (admin/analista); senão o próprio usuário e a equipe abaixo dele."""
    if usuario.is_admin_ou_analista():
        return None
    return usuario.ids_equipe()


# ============================================================
# AUTH
# ============================================================

@api_bp.route('/auth/login', methods=['POST'])
@rate_limit(max_tentativas=10, decaimento_minutos=1)
def login():
    """Autenticação de usuário → JWT"""
    data = _dados()
    email = (data.get('email') or '').strip().lower()
    senha = data.get('senha') or data.get('password')

    if not email or not senha:
        raise ErroValidacao('Email e senha são obrigatórios')

    usuario = Usuario.query.filter(db.func.lower(Usuario.email) == email).first()
    if usuario is None or not usuario.verificar_senha(senha):
        logger.warning(f"Login falhou para {email}")
        return jsonify({'success': False, 'message': 'Credenciais inválidas'}), 401
    if not usuario.is_active:
        return resposta_auth('Usuário inativo.', 'user_inactive')

    token = get_token_store().emitir(usuario)
    logger.info(f"Login: {usuario.email} ({usuario.role})")
    return jsonify({
        'success': True,
        'access_token': token,
        'token_type': 'bearer',
        'expires_in': int(current_app.config['JWT_ACCESS_TOKEN_EXPIRES'].total_seconds()),
        'usuario': usuario.to_dict(),
    })


@api_bp.route('/auth/register', methods=['POST'])
@protegido('usuarios.create')
@exigir_roles('admin')
def register():
    """Registro de novo usuário (somente admin)"""
    return _criar_usuario(_dados(), g.usuario_atual)


@api_bp.route('/auth/logout', methods=['POST'])
@protegido(auto_refresh=False)
def logout():
    get_token_store().revogar(g.jwt_claims)
    return _ok(message='Logout realizado com sucesso')


@api_bp.route('/auth/refresh', methods=['POST'])
@rate_limit()
def refresh():
    """Renovação explícita; aceita token expirado dentro da janela de renovação."""
    token, falha = extrair_token()
    if falha:
        return resposta_auth('Token de acesso não fornecido.', falha)
    try:
        store = get_token_store()
        claims = store.autenticar(token, permitir_expirado=True)
        usuario = db.session.get(Usuario, int(claims['sub']))
        if usuario is None or not usuario.is_active:
            return resposta_auth('Usuário inativo.', 'user_inactive')
        novo = store.renovar(claims)
    except ErroToken as e:
        return resposta_auth(e.message, e.error_type)
    return jsonify({
        'success': True,
        'access_token': novo,
        'token_type': 'bearer',
        'expires_in': int(current_app.config['JWT_ACCESS_TOKEN_EXPIRES'].total_seconds()),
    })


@api_bp.route('/auth/me', methods=['GET'])
@protegido()
def me():
    return _ok(g.usuario_atual.to_dict())


@api_bp.route('/auth/change-password', methods=['POST'])
@protegido()
def change_password():
    data = _dados()
    usuario = g.usuario_atual
    if not usuario.verificar_senha(data.get('senha_atual') or ''):
        raise ErroValidacao('Senha atual incorreta', errors={'senha_atual': 'Incorreta'})
    nova = data.get('nova_senha') or ''
    if len(nova) < 6:
        raise ErroValidacao('Nova senha deve ter ao menos 6 caracteres', errors={'nova_senha': 'Muito curta'})
    usuario.set_senha(nova)
    auditoria_service.registrar('usuarios', usuario.id, 'ALTERADO', sub_acao='SENHA', modulo='usuarios')
    db.session.commit()
    return _ok(message='Senha alterada com sucesso')


# ============================================================
# USUÁRIOS
# ============================================================

def _criar_usuario(data, criador):
    erros = {}
    for campo in ('nome', 'email', 'senha'):
        if not data.get(campo):
            erros[campo] = 'Obrigatório'
    role = data.get('role', 'vendedor')
    if role not in ROLES:
        erros['role'] = 'Role inválido'
    elif role in ('admin', 'analista') and criador.role != 'admin':
        erros['role'] = 'Somente admin cria admin ou analista'
    if erros:
        raise ErroValidacao('Dados inválidos', errors=erros)

    email = data['email'].strip().lower()
    if Usuario.query.filter(db.func.lower(Usuario.email) == email).first():
        raise ErroValidacao('Email já cadastrado', errors={'email': 'Já cadastrado'})

    manager_id = data.get('manager_id')
    if not criador.is_admin_ou_analista():
        manager_id = criador.id

    usuario = Usuario(
        nome=data['nome'].strip(),
        email=email,
        role=role,
        manager_id=manager_id,
        telefone=data.get('telefone'),
        pix=data.get('pix'),
    )
    usuario.set_senha(data['senha'])
    db.session.add(usuario)
    db.session.flush()
    auditoria_service.registrar('usuarios', usuario.id, 'CRIADO', modulo='usuarios',
                                dados_novos={'email': usuario.email, 'role': usuario.role})
    db.session.commit()
    logger.info(f"Usuário {usuario.email} ({role}) criado por {criador.email}")
    return _ok(usuario.to_dict(), 'Usuário criado com sucesso', 201)


def _buscar_usuario_visivel(usuario_id):
    usuario = db.session.get(Usuario, usuario_id)
    if usuario is None:
        raise NaoEncontrado('Usuário não encontrado')
    visiveis = _ids_visiveis(g.usuario_atual)
    if visiveis is not None and usuario.id not in visiveis:
        raise AcessoNegado()
    return usuario


@api_bp.route('/usuarios', methods=['GET'])
@protegido('usuarios.view')
def listar_usuarios():
    """Lista hierárquica: admin/analista veem todos, os demais a própria equipe"""
    query = Usuario.query
    visiveis = _ids_visiveis(g.usuario_atual)
    if visiveis is not None:
        query = query.filter(Usuario.id.in_(visiveis))
    role = request.args.get('role')
    if role:
        query = query.filter(Usuario.role == role)
    ativo = request.args.get('ativo')
    if ativo is not None:
        query = query.filter(Usuario.is_active.is_(ativo.lower() == 'true'))
    return _paginar(query.order_by(Usuario.nome))


@api_bp.route('/usuarios', methods=['POST'])
@protegido('usuarios.create')
def criar_usuario():
    return _criar_usuario(_dados(), g.usuario_atual)


@api_bp.route('/usuarios/<int:usuario_id>', methods=['GET'])
@protegido('usuarios.view')
def obter_usuario(usuario_id):
    return _ok(_buscar_usuario_visivel(usuario_id).to_dict())


@api_bp.route('/usuarios/<int:usuario_id>', methods=['PUT'])
@protegido('usuarios.edit')
def atualizar_usuario(usuario_id):
    usuario = _buscar_usuario_visivel(usuario_id)
    data = _dados()
    for campo in ('nome', 'telefone', 'pix'):
        if campo in data:
            setattr(usuario, campo, data[campo])
    if 'role' in data and g.usuario_atual.role == 'admin':
        if data['role'] not in ROLES:
            raise ErroValidacao('Role inválido', errors={'role': data['role']})
        usuario.role = data['role']
    if 'manager_id' in data and g.usuario_atual.is_admin_ou_analista():
        if data['manager_id'] == usuario.id:
            raise ErroValidacao('Usuário não pode ser o próprio gerente')
        usuario.manager_id = data['manager_id']
    db.session.commit()
    return _ok(usuario.to_dict(), 'Usuário atualizado com sucesso')


@api_bp.route('/usuarios/<int:usuario_id>/toggle-active', methods=['PATCH'])
@protegido('usuarios.edit')
@exigir_roles('admin', 'analista')
def alternar_usuario(usuario_id):
    usuario = db.session.get(Usuario, usuario_id)
    if usuario is None:
        raise NaoEncontrado('Usuário não encontrado')
    if usuario.id == g.usuario_atual.id:
        raise ErroValidacao('Não é possível desativar o próprio usuário')

    usuario.is_active = not usuario.is_active
    auditoria_service.registrar_evento(
        'USUARIO_ATIVADO' if usuario.is_active else 'USUARIO_DESATIVADO',
        f"Usuário {usuario.email} {'ativado' if usuario.is_active else 'desativado'}",
        'usuarios', 'usuarios', usuario.id, critico=True,
        dados_novos={'is_active': usuario.is_active},
    )
    db.session.commit()
    return _ok(usuario.to_dict(), 'Usuário ativado' if usuario.is_active else 'Usuário desativado')


# ============================================================
# PROPOSTAS
# ============================================================

def _buscar_proposta_visivel(proposta_id):
    proposta = proposta_service.buscar(proposta_id)
    visiveis = _ids_visiveis(g.usuario_atual)
    if visiveis is not None and proposta.usuario_id not in visiveis and proposta.consultor_id not in visiveis:
        raise AcessoNegado()
    return proposta


@api_bp.route('/propostas', methods=['GET'])
@protegido('propostas.view')
def listar_propostas():
    query = proposta_service.listar(_ids_visiveis(g.usuario_atual), request.args.get('busca'))
    return _paginar(query)


@api_bp.route('/propostas', methods=['POST'])
@protegido('propostas.create')
def criar_proposta():
    proposta = proposta_service.criar(_dados(), g.usuario_atual)
    return _ok(proposta.to_dict(), 'Proposta criada com sucesso', 201)


@api_bp.route('/propostas/<int:proposta_id>', methods=['GET'])
@protegido('propostas.view')
def obter_proposta(proposta_id):
    return _ok(_buscar_proposta_visivel(proposta_id).to_dict())


@api_bp.route('/propostas/<int:proposta_id>/unidades/<numero_unidade>/status', methods=['PATCH'])
@protegido('propostas.change_status', 'propostas.edit')
def alterar_status_uc(proposta_id, numero_unidade):
    proposta = _buscar_proposta_visivel(proposta_id)
    status = _dados().get('status')
    if not status:
        raise ErroValidacao('Status é obrigatório', errors={'status': 'Obrigatório'})
    proposta, controle = proposta_service.alterar_status_uc(proposta, numero_unidade, status, g.usuario_atual)
    return _ok({
        'proposta': proposta.to_dict(),
        'controle': controle.to_dict() if controle is not None else None,
    }, 'Status da UC atualizado')


@api_bp.route('/propostas/<int:proposta_id>', methods=['DELETE'])
@protegido('propostas.delete')
def excluir_proposta(proposta_id):
    proposta_service.excluir(_buscar_proposta_visivel(proposta_id), g.usuario_atual)
    return _ok(message='Proposta excluída com sucesso')


# ============================================================
# UNIDADES CONSUMIDORAS / UGs
# ============================================================

@api_bp.route('/unidades-consumidoras', methods=['GET'])
@protegido('unidades.view')
def listar_unidades():
    query = UnidadeConsumidora.query.filter(UnidadeConsumidora.deleted_at.is_(None))
    gerador = request.args.get('gerador')
    if gerador is not None:
        query = query.filter(UnidadeConsumidora.gerador.is_(gerador.lower() == 'true'))
    busca = request.args.get('busca')
    if busca:
        query = query.filter(db.or_(
            UnidadeConsumidora.numero_unidade.ilike(f'%{busca}%'),
            UnidadeConsumidora.apelido.ilike(f'%{busca}%'),
            UnidadeConsumidora.nome_usina.ilike(f'%{busca}%'),
        ))
    return _paginar(query.order_by(UnidadeConsumidora.numero_unidade))


@api_bp.route('/unidades-consumidoras', methods=['POST'])
@protegido('unidades.create')
def criar_unidade():
    unidade = unidade_service.criar(_dados(), g.usuario_atual)
    return _ok(unidade.to_dict(), 'Unidade criada com sucesso', 201)


@api_bp.route('/unidades-consumidoras/<int:unidade_id>', methods=['GET'])
@protegido('unidades.view')
def obter_unidade(unidade_id):
    return _ok(unidade_service.buscar(unidade_id).to_dict())


@api_bp.route('/unidades-consumidoras/<int:unidade_id>', methods=['PUT'])
@protegido('unidades.edit')
def atualizar_unidade(unidade_id):
    unidade = unidade_service.atualizar(unidade_service.buscar(unidade_id), _dados())
    return _ok(unidade.to_dict(), 'Unidade atualizada com sucesso')


@api_bp.route('/unidades-consumidoras/<int:unidade_id>', methods=['DELETE'])
@protegido('unidades.delete')
def excluir_unidade(unidade_id):
    unidade_service.excluir(unidade_service.buscar(unidade_id), g.usuario_atual)
    return _ok(message='Unidade excluída com sucesso')


@api_bp.route('/unidades-consumidoras/<int:unidade_id>/convert-to-ug', methods=['POST'])
@protegido('unidades.convert_ug')
def converter_para_ug(unidade_id):
    unidade = unidade_service.converter_para_ug(unidade_service.buscar(unidade_id), _dados())
    return _ok(unidade.to_dict(), 'UC convertida para UG com sucesso!')


@api_bp.route('/unidades-consumidoras/<int:unidade_id>/revert-to-uc', methods=['POST'])
@protegido('unidades.convert_ug')
def reverter_para_uc(unidade_id):
    unidade = unidade_service.reverter_para_uc(unidade_service.buscar(unidade_id))
    return _ok(unidade.to_dict(), 'UG revertida para UC com sucesso!')


@api_bp.route('/ugs', methods=['GET'])
@protegido('unidades.view')
def listar_ugs():
    return _ok(unidade_service.listar_ugs())


@api_bp.route('/ugs/statistics', methods=['GET'])
@protegido('unidades.view')
def estatisticas_ugs():
    return _ok(unidade_service.estatisticas_ugs())


# ============================================================
# CONTROLE CLUBE
# ============================================================

@api_bp.route('/controle', methods=['GET'])
@protegido('controle.view')
def listar_controle():
    com_ug = request.args.get('com_ug')
    query = controle_service.listar(
        status=request.args.get('status_troca'),
        com_ug=None if com_ug is None else com_ug.lower() == 'true',
        busca=request.args.get('busca'),
        ids_usuarios=_ids_visiveis(g.usuario_atual),
    )
    return _paginar(query)


@api_bp.route('/controle/estatisticas', methods=['GET'])
@protegido('controle.view')
def estatisticas_controle():
    return _ok(controle_service.estatisticas())


@api_bp.route('/controle/validar-status', methods=['GET'])
@protegido('controle.view')
def validar_status_controle():
    resultado = controle_service.validar_status()
    return _ok(resultado, 'Nenhum status inválido' if not resultado['invalidos'] else
               f"{len(resultado['invalidos'])} registro(s) com status inválido")


@api_bp.route('/controle/normalizar-status', methods=['POST'])
@protegido('controle.edit')
@exigir_roles('admin')
def normalizar_status_controle():
    alterados = controle_service.normalizar_legados(g.usuario_atual)
    return _ok({'alterados': alterados}, f"{alterados} registro(s) normalizado(s)")


@api_bp.route('/controle/calibragem-global', methods=['POST'])
@protegido('controle.calibragem')
@exigir_roles('admin', 'analista')
def calibragem_global():
    valor = _dados().get('calibragem_global')
    if valor is None:
        raise ErroValidacao('calibragem_global é obrigatório', errors={'calibragem_global': 'Obrigatório'})
    recalculados = controle_service.aplicar_calibragem_global(valor, g.usuario_atual)
    return _ok({'controles_recalculados': recalculados}, 'Calibragem global aplicada')


@api_bp.route('/controle/<int:controle_id>', methods=['GET'])
@protegido('controle.view')
def obter_controle(controle_id):
    return _ok(controle_service.buscar(controle_id).to_dict())


@api_bp.route('/controle/<int:controle_id>/status', methods=['PATCH'])
@protegido('controle.edit')
def alterar_status_controle(controle_id):
    controle = controle_service.mudar_status(controle_service.buscar(controle_id), _dados().get('status_troca'))
    return _ok(controle.to_dict(), 'Status atualizado')


@api_bp.route('/controle/<int:controle_id>/status/corrigir', methods=['PATCH'])
@protegido('controle.edit')
@exigir_roles('admin', 'analista')
def corrigir_status_controle(controle_id):
    controle = controle_service.corrigir(controle_service.buscar(controle_id), _dados().get('status_troca'),
                                         g.usuario_atual)
    return _ok(controle.to_dict(), 'Status corrigido')


@api_bp.route('/controle/<int:controle_id>/data-titularidade', methods=['PATCH'])
@protegido('controle.edit')
def alterar_data_titularidade(controle_id):
    nova = _dados().get('data_titularidade')
    if not nova:
        raise ErroValidacao('data_titularidade é obrigatória', errors={'data_titularidade': 'Obrigatório'})
    controle = controle_service.alterar_data_titularidade(controle_service.buscar(controle_id), nova)
    return _ok(controle.to_dict(), 'Data de titularidade atualizada')


@api_bp.route('/controle/<int:controle_id>/calibragem', methods=['PATCH'])
@protegido('controle.calibragem')
def calibragem_individual(controle_id):
    controle = controle_service.definir_calibragem_individual(
        controle_service.buscar(controle_id), _dados().get('calibragem_individual'))
    return _ok(controle.to_dict(), 'Calibragem atualizada')


@api_bp.route('/controle/<int:controle_id>/ug', methods=['POST'])
@protegido('controle.manage_ug')
def vincular_ug(controle_id):
    ug_id = _dados().get('ug_id')
    if not ug_id:
        raise ErroValidacao('ug_id é obrigatório', errors={'ug_id': 'Obrigatório'})
    controle = controle_service.vincular_ug(controle_service.buscar(controle_id), ug_id)
    return _ok(controle.to_dict(), 'UG vinculada')


@api_bp.route('/controle/<int:controle_id>/ug', methods=['DELETE'])
@protegido('controle.manage_ug')
def desvincular_ug(controle_id):
    controle = controle_service.desvincular_ug(controle_service.buscar(controle_id))
    return _ok(controle.to_dict(), 'UG desvinculada')


# ============================================================
# CONFIGURAÇÕES
# ============================================================

@api_bp.route('/configuracoes', methods=['GET'])
@protegido('configuracoes.view')
def listar_configuracoes():
    query = Configuracao.query
    grupo = request.args.get('grupo')
    if grupo:
        query = query.filter(Configuracao.grupo == grupo)
    return _ok([c.to_dict() for c in query.order_by(Configuracao.grupo, Configuracao.chave).all()])


@api_bp.route('/configuracoes/grupo/<grupo>', methods=['GET'])
@protegido('configuracoes.view')
def configuracoes_por_grupo(grupo):
    return _ok(configuracao_service.por_grupo(grupo))


@api_bp.route('/configuracoes/bulk', methods=['PUT'])
@protegido('configuracoes.edit')
def atualizar_configuracoes_lote():
    configuracoes = _dados().get('configuracoes')
    if not isinstance(configuracoes, dict) or not configuracoes:
        raise ErroValidacao('Informe as configurações a atualizar', errors={'configuracoes': 'Obrigatório'})
    resultados = configuracao_service.aplicar_lote(configuracoes, g.usuario_atual)
    return _ok(resultados, f"{sum(resultados.values())} de {len(resultados)} configuração(ões) atualizada(s)")


@api_bp.route('/configuracoes/<chave>', methods=['GET'])
@protegido('configuracoes.view')
def obter_configuracao(chave):
    return _ok(configuracao_service.buscar(chave).to_dict())


@api_bp.route('/configuracoes/<chave>', methods=['PUT'])
@protegido('configuracoes.edit')
def atualizar_configuracao(chave):
    data = _dados()
    if 'valor' not in data:
        raise ErroValidacao('valor é obrigatório', errors={'valor': 'Obrigatório'})
    config, anterior = configuracao_service.definir_valor(chave, data['valor'], usuario=g.usuario_atual,
                                                          tipo=data.get('tipo'), commit=False)
    auditoria_service.registrar('configuracoes', chave, 'ALTERADO', modulo='configuracoes',
                                dados_anteriores={'valor': anterior}, dados_novos={'valor': data['valor']})
    db.session.commit()
    return _ok(config.to_dict(), 'Configuração atualizada')


# ============================================================
# AUDITORIA
# ============================================================

@api_bp.route('/auditoria', methods=['GET'])
@protegido()
@exigir_roles('admin', 'analista')
def listar_auditoria():
    critico = request.args.get('critico')
    query = auditoria_service.filtrar(
        entidade=request.args.get('entidade'),
        acao=request.args.get('acao'),
        modulo=request.args.get('modulo'),
        critico=None if critico is None else critico.lower() == 'true',
    )
    return _paginar(query)


@api_bp.route('/auditoria/<entidade>/<entidade_id>', methods=['GET'])
@protegido()
@exigir_roles('admin', 'analista')
def auditoria_da_entidade(entidade, entidade_id):
    eventos = auditoria_service.filtrar(entidade=entidade, entidade_id=entidade_id).all()
    return _ok([e.to_dict() for e in eventos])


# ============================================================
# HISTÓRICO MENSAL
# ============================================================

@api_bp.route('/historico-mensal', methods=['GET'])
@protegido()
@exigir_roles('admin', 'analista')
def listar_historico():
    resumos = HistoricoMensalResumo.query.order_by(HistoricoMensalResumo.ano_mes.desc()).all()
    return _ok([r.to_dict() for r in resumos])


@api_bp.route('/historico-mensal/<ano_mes>', methods=['GET'])
@protegido()
@exigir_roles('admin', 'analista')
def obter_historico(ano_mes):
    resumo = historico_service.buscar_mes(ano_mes)
    return _ok({
        'resumo': resumo.to_dict(),
        'associados': [item.to_dict() for item in resumo.itens],
    })


@api_bp.route('/historico-mensal/<ano_mes>/exportar', methods=['GET'])
@protegido()
@exigir_roles('admin', 'analista')
def exportar_historico(ano_mes):
    conteudo = historico_service.exportar_csv(ano_mes)
    return Response(conteudo, mimetype='text/csv', headers={
        'Content-Disposition': f'attachment; filename="historico_{ano_mes}.csv"',
    })


@api_bp.route('/historico-mensal/gerar', methods=['POST'])
@protegido()
@exigir_roles('admin', 'analista')
def gerar_historico():
    ano_mes = _dados().get('ano_mes')
    resumo = (historico_service.gerar_snapshot_mes(ano_mes) if ano_mes
              else historico_service.gerar_mes_anterior())
    return _ok(resumo.to_dict(), f"Snapshot {resumo.ano_mes} gerado", 201)


@api_bp.route('/historico-mensal/retroativo', methods=['POST'])
@protegido()
@exigir_roles('admin', 'analista')
def gerar_historico_retroativo():
    resumos = historico_service.gerar_retroativo()
    return _ok([r.to_dict() for r in resumos], f"{len(resumos)} meses gerados com sucesso", 201)
