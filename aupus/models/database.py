"""
Aupus - Modelos do Banco de Dados
Usuários, propostas, unidades consumidoras, controle clube,
configurações, auditoria e histórico mensal
"""
from datetime import date, datetime, timezone
from decimal import Decimal

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from werkzeug.security import generate_password_hash, check_password_hash

from ..services.status_troca import (
    STATUS_ESTEIRA, normalizar_status_troca, normalizar_status_proposta
)

db = SQLAlchemy()


def _agora():
    return datetime.now(timezone.utc)


def _iso(valor):
    return valor.isoformat() if valor else None


def _num(valor):
    return float(valor) if valor is not None else None


# ============================================================
# USUÁRIOS E AUTENTICAÇÃO
# ============================================================

ROLES = ('admin', 'analista', 'consultor', 'gerente', 'vendedor')


class Usuario(db.Model):
    __tablename__ = 'usuarios'

    id = db.Column(db.Integer, primary_key=True)
    nome = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    senha_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='vendedor')
    # roles: admin, analista, consultor, gerente, vendedor
    manager_id = db.Column(db.Integer, db.ForeignKey('usuarios.id'), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    telefone = db.Column(db.String(20))
    pix = db.Column(db.String(200))
    created_at = db.Column(db.DateTime, default=_agora)
    updated_at = db.Column(db.DateTime, default=_agora, onupdate=_agora)

    manager = db.relationship('Usuario', remote_side=[id], backref='subordinados')

    def set_senha(self, senha):
        self.senha_hash = generate_password_hash(senha)

    def verificar_senha(self, senha):
        return check_password_hash(self.senha_hash, senha)

    def is_admin_ou_analista(self):
        return self.role in ('admin', 'analista')

    def claims_jwt(self):
        """Claims adicionais gravados no token de acesso."""
        return {
            'role': self.role,
            'email': self.email,
            'nome': self.nome,
            'is_active': bool(self.is_active),
        }

    def ids_equipe(self):
        """IDs do próprio usuário e de todos os subordinados (recursivo)."""
        ids = [self.id]
        for sub in self.subordinados:
            ids.extend(sub.ids_equipe())
        return ids

    def to_dict(self):
        return {
            'id': self.id,
            'nome': self.nome,
            'email': self.email,
            'role': self.role,
            'manager_id': self.manager_id,
            'is_active': self.is_active,
            'telefone': self.telefone,
            'pix': self.pix,
        }


# ============================================================
# PROPOSTAS E UNIDADES
# ============================================================

class Proposta(db.Model):
    """Proposta comercial; as UCs ficam embutidas em JSON, cada uma com seu status"""
    __tablename__ = 'propostas'

    id = db.Column(db.Integer, primary_key=True)
    numero_proposta = db.Column(db.String(50), unique=True, nullable=False)
    data_proposta = db.Column(db.Date, default=date.today)
    nome_cliente = db.Column(db.String(200), nullable=False)
    cpf_cnpj = db.Column(db.String(18))
    consultor_id = db.Column(db.Integer, db.ForeignKey('usuarios.id'), nullable=True)
    usuario_id = db.Column(db.Integer, db.ForeignKey('usuarios.id'), nullable=True)
    recorrencia = db.Column(db.String(50), default='3%')
    desconto_tarifa = db.Column(db.Numeric(5, 2), default=20)
    desconto_bandeira = db.Column(db.Numeric(5, 2), default=20)
    inflacao = db.Column(db.Numeric(5, 2), default=2)
    unidades_consumidoras = db.Column(db.JSON, default=list)
    documentacao = db.Column(db.JSON, default=dict)
    observacoes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=_agora)
    updated_at = db.Column(db.DateTime, default=_agora, onupdate=_agora)
    deleted_at = db.Column(db.DateTime, nullable=True)

    consultor = db.relationship('Usuario', foreign_keys=[consultor_id])
    usuario = db.relationship('Usuario', foreign_keys=[usuario_id])

    @property
    def tem_recorrencia(self):
        # sem consultor não há comissão recorrente
        return self.consultor_id is not None

    def unidades_normalizadas(self):
        ucs = []
        for uc in self.unidades_consumidoras or []:
            item = dict(uc)
            item['status'] = normalizar_status_proposta(item.get('status'))
            ucs.append(item)
        return ucs

    def buscar_uc(self, numero_unidade):
        for uc in self.unidades_normalizadas():
            if str(uc.get('numero_unidade')) == str(numero_unidade):
                return uc
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'numero_proposta': self.numero_proposta,
            'data_proposta': _iso(self.data_proposta),
            'nome_cliente': self.nome_cliente,
            'cpf_cnpj': self.cpf_cnpj,
            'consultor_id': self.consultor_id,
            'consultor': self.consultor.nome if self.consultor else None,
            'recorrencia': self.recorrencia if self.tem_recorrencia else None,
            'desconto_tarifa': _num(self.desconto_tarifa),
            'desconto_bandeira': _num(self.desconto_bandeira),
            'inflacao': _num(self.inflacao),
            'unidades_consumidoras': self.unidades_normalizadas(),
            'documentacao': self.documentacao or {},
            'observacoes': self.observacoes,
            'created_at': _iso(self.created_at),
        }


def calcular_capacidade(potencia_cc, fator_capacidade):
    """Capacidade mensal da usina: 720 h x potência CC x fator de capacidade (%)."""
    if not potencia_cc or not fator_capacidade:
        return None
    return Decimal(720) * Decimal(str(potencia_cc)) * (Decimal(str(fator_capacidade)) / Decimal(100))


class UnidadeConsumidora(db.Model):
    """UC fechada ou UG (usina geradora, gerador=True)"""
    __tablename__ = 'unidades_consumidoras'
    __table_args__ = (
        # número único apenas entre unidades não excluídas
        db.Index(
            'uq_uc_numero_ativo', 'numero_unidade', unique=True,
            postgresql_where=db.text('deleted_at IS NULL'),
            sqlite_where=db.text('deleted_at IS NULL'),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    numero_unidade = db.Column(db.String(50), nullable=False)
    apelido = db.Column(db.String(100))
    consumo_medio = db.Column(db.Numeric(10, 2))
    ligacao = db.Column(db.String(20))
    distribuidora = db.Column(db.String(100))

    # Usina
    gerador = db.Column(db.Boolean, default=False, nullable=False)
    nome_usina = db.Column(db.String(200))
    potencia_cc = db.Column(db.Numeric(10, 2))
    potencia_ca = db.Column(db.Numeric(10, 2))
    fator_capacidade = db.Column(db.Numeric(5, 2))
    capacidade_calculada = db.Column(db.Numeric(12, 2))

    # Endereço
    logradouro = db.Column(db.String(200))
    numero = db.Column(db.String(20))
    bairro = db.Column(db.String(100))
    cidade = db.Column(db.String(100))
    estado = db.Column(db.String(2))
    cep = db.Column(db.String(10))

    # Contato de faturamento
    email_fatura = db.Column(db.String(200))
    telefone_fatura = db.Column(db.String(20))

    proposta_id = db.Column(db.Integer, db.ForeignKey('propostas.id'), nullable=True)
    usuario_id = db.Column(db.Integer, db.ForeignKey('usuarios.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=_agora)
    updated_at = db.Column(db.DateTime, default=_agora, onupdate=_agora)
    deleted_at = db.Column(db.DateTime, nullable=True)
    deleted_by = db.Column(db.Integer, db.ForeignKey('usuarios.id'), nullable=True)

    proposta = db.relationship('Proposta', backref='ucs_fechadas')

    def pode_ser_ug(self):
        return bool(self.nome_usina) and bool(self.potencia_cc) and bool(self.fator_capacidade)

    def erros_validacao(self):
        """Invariantes de UG: gerador exige dados da usina; UC comum não declara capacidade."""
        erros = {}
        if self.gerador:
            if not self.nome_usina:
                erros['nome_usina'] = 'Obrigatório para unidade geradora'
            if self.potencia_cc is None:
                erros['potencia_cc'] = 'Obrigatório para unidade geradora'
            if self.fator_capacidade is None:
                erros['fator_capacidade'] = 'Obrigatório para unidade geradora'
        elif self.capacidade_calculada:
            erros['capacidade_calculada'] = 'Unidade não geradora não possui capacidade'
        return erros

    def atualizar_capacidade(self):
        if self.gerador:
            self.capacidade_calculada = calcular_capacidade(self.potencia_cc, self.fator_capacidade)
        else:
            self.capacidade_calculada = None

    def to_dict(self):
        return {
            'id': self.id,
            'numero_unidade': self.numero_unidade,
            'apelido': self.apelido,
            'consumo_medio': _num(self.consumo_medio),
            'ligacao': self.ligacao,
            'distribuidora': self.distribuidora,
            'gerador': self.gerador,
            'nome_usina': self.nome_usina,
            'potencia_cc': _num(self.potencia_cc),
            'potencia_ca': _num(self.potencia_ca),
            'fator_capacidade': _num(self.fator_capacidade),
            'capacidade_calculada': _num(self.capacidade_calculada),
            'endereco': {
                'logradouro': self.logradouro,
                'numero': self.numero,
                'bairro': self.bairro,
                'cidade': self.cidade,
                'estado': self.estado,
                'cep': self.cep,
            },
            'email_fatura': self.email_fatura,
            'telefone_fatura': self.telefone_fatura,
            'proposta_id': self.proposta_id,
        }


@event.listens_for(UnidadeConsumidora, 'before_insert')
@event.listens_for(UnidadeConsumidora, 'before_update')
def _sincronizar_capacidade(mapper, connection, unidade):
    unidade.atualizar_capacidade()


# ============================================================
# CONTROLE CLUBE
# ============================================================

class ControleClube(db.Model):
    """Entrada do clube: proposta + UC fechada (+ UG alocada)"""
    __tablename__ = 'controle_clube'
    __table_args__ = (
        db.UniqueConstraint('proposta_id', 'uc_id', name='unique_proposta_uc'),
    )

    id = db.Column(db.Integer, primary_key=True)
    proposta_id = db.Column(db.Integer, db.ForeignKey('propostas.id'), nullable=False)
    uc_id = db.Column(db.Integer, db.ForeignKey('unidades_consumidoras.id'), nullable=False)
    ug_id = db.Column(db.Integer, db.ForeignKey('unidades_consumidoras.id'), nullable=True)

    calibragem_individual = db.Column(db.Numeric(10, 2), nullable=True)
    valor_calibrado = db.Column(db.Numeric(10, 2), nullable=True)
    # null = herda da proposta
    desconto_tarifa = db.Column(db.String(10), nullable=True)
    desconto_bandeira = db.Column(db.String(10), nullable=True)

    # valor gravado; leitura sempre normalizada via status_troca
    status_troca_bruto = db.Column('status_troca', db.String(30), nullable=False,
                                   default=STATUS_ESTEIRA, index=True)
    data_titularidade = db.Column(db.Date, default=date.today)
    data_assinatura = db.Column(db.DateTime, nullable=True)
    data_em_andamento = db.Column(db.DateTime, nullable=True)
    data_entrada_controle = db.Column(db.DateTime, default=_agora)
    data_alocacao_ug = db.Column(db.DateTime, nullable=True)

    # snapshot do cliente
    nome_cliente = db.Column(db.String(200))
    apelido_uc = db.Column(db.String(100))
    cpf_cnpj = db.Column(db.String(18))

    observacoes = db.Column(db.Text)
    documentacao = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=_agora)
    updated_at = db.Column(db.DateTime, default=_agora, onupdate=_agora)
    deleted_at = db.Column(db.DateTime, nullable=True)

    proposta = db.relationship('Proposta', backref='controles')
    uc = db.relationship('UnidadeConsumidora', foreign_keys=[uc_id])
    ug = db.relationship('UnidadeConsumidora', foreign_keys=[ug_id])

    @property
    def status_troca(self):
        return normalizar_status_troca(self.status_troca_bruto)

    @status_troca.setter
    def status_troca(self, valor):
        self.status_troca_bruto = normalizar_status_troca(valor)

    def descontos_efetivos(self):
        """Desconto do controle ou, se nulo, o da proposta."""
        def _percentual(valor):
            return f"{float(valor):g}%" if valor is not None else None

        tarifa = self.desconto_tarifa
        bandeira = self.desconto_bandeira
        if tarifa is None and self.proposta is not None:
            tarifa = _percentual(self.proposta.desconto_tarifa)
        if bandeira is None and self.proposta is not None:
            bandeira = _percentual(self.proposta.desconto_bandeira)
        return {'desconto_tarifa': tarifa, 'desconto_bandeira': bandeira}

    def anotar(self, texto):
        carimbo = datetime.now().strftime('%d/%m/%Y %H:%M')
        self.observacoes = (self.observacoes or '') + f"\n[{carimbo}] {texto}"

    def to_dict(self):
        data = {
            'id': self.id,
            'proposta_id': self.proposta_id,
            'numero_proposta': self.proposta.numero_proposta if self.proposta else None,
            'uc_id': self.uc_id,
            'numero_uc': self.uc.numero_unidade if self.uc else None,
            'ug_id': self.ug_id,
            'ug_nome': self.ug.nome_usina if self.ug else None,
            'status_troca': self.status_troca,
            'calibragem_individual': _num(self.calibragem_individual),
            'valor_calibrado': _num(self.valor_calibrado),
            'data_titularidade': _iso(self.data_titularidade),
            'data_assinatura': _iso(self.data_assinatura),
            'data_em_andamento': _iso(self.data_em_andamento),
            'data_entrada_controle': _iso(self.data_entrada_controle),
            'data_alocacao_ug': _iso(self.data_alocacao_ug),
            'nome_cliente': self.nome_cliente,
            'apelido_uc': self.apelido_uc,
            'cpf_cnpj': self.cpf_cnpj,
            'observacoes': self.observacoes,
            'ativo': self.deleted_at is None,
        }
        data.update(self.descontos_efetivos())
        return data


# ============================================================
# CONFIGURAÇÕES
# ============================================================

class Configuracao(db.Model):
    """Chave → valor tipado (string, number, boolean, json)"""
    __tablename__ = 'configuracoes'

    id = db.Column(db.Integer, primary_key=True)
    chave = db.Column(db.String(50), unique=True, nullable=False)
    valor = db.Column(db.Text, nullable=False)
    tipo = db.Column(db.String(10), nullable=False, default='string')
    descricao = db.Column(db.Text)
    grupo = db.Column(db.String(50), default='geral', index=True)
    updated_by = db.Column(db.Integer, db.ForeignKey('usuarios.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=_agora)
    updated_at = db.Column(db.DateTime, default=_agora, onupdate=_agora)

    def to_dict(self):
        from ..services.configuracao_service import converter_valor
        return {
            'id': self.id,
            'chave': self.chave,
            'valor': converter_valor(self.valor, self.tipo),
            'tipo': self.tipo,
            'descricao': self.descricao,
            'grupo': self.grupo,
            'updated_by': self.updated_by,
            'updated_at': _iso(self.updated_at),
        }


# ============================================================
# AUDITORIA
# ============================================================

class Auditoria(db.Model):
    """Log append-only de ações sobre entidades"""
    __tablename__ = 'auditoria'

    id = db.Column(db.Integer, primary_key=True)
    entidade = db.Column(db.String(50), nullable=False, index=True)
    entidade_id = db.Column(db.String(36), nullable=False, index=True)
    entidade_relacionada = db.Column(db.String(50))
    entidade_relacionada_id = db.Column(db.String(36))
    acao = db.Column(db.String(30), nullable=False, index=True)
    sub_acao = db.Column(db.String(50))
    evento_tipo = db.Column(db.String(50), index=True)
    descricao_evento = db.Column(db.Text)
    modulo = db.Column(db.String(30), index=True)
    dados_anteriores = db.Column(db.JSON)
    dados_novos = db.Column(db.JSON)
    metadados = db.Column(db.JSON)
    dados_contexto = db.Column(db.JSON)
    evento_critico = db.Column(db.Boolean, default=False, nullable=False)
    usuario_id = db.Column(db.Integer, db.ForeignKey('usuarios.id'), nullable=True, index=True)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    data_acao = db.Column(db.DateTime, default=_agora, index=True)
    observacoes = db.Column(db.Text)

    def to_dict(self):
        return {
            'id': self.id,
            'entidade': self.entidade,
            'entidade_id': self.entidade_id,
            'entidade_relacionada': self.entidade_relacionada,
            'entidade_relacionada_id': self.entidade_relacionada_id,
            'acao': self.acao,
            'sub_acao': self.sub_acao,
            'evento_tipo': self.evento_tipo,
            'descricao_evento': self.descricao_evento,
            'modulo': self.modulo,
            'dados_anteriores': self.dados_anteriores,
            'dados_novos': self.dados_novos,
            'metadados': self.metadados,
            'evento_critico': self.evento_critico,
            'usuario_id': self.usuario_id,
            'ip_address': self.ip_address,
            'data_acao': _iso(self.data_acao),
            'observacoes': self.observacoes,
        }


# ============================================================
# HISTÓRICO MENSAL
# ============================================================

class HistoricoMensalResumo(db.Model):
    """Resumo do snapshot mensal (um por mês)"""
    __tablename__ = 'historico_mensal_resumo'

    id = db.Column(db.Integer, primary_key=True)
    ano_mes = db.Column(db.String(7), unique=True, nullable=False)
    total_associados = db.Column(db.Integer, default=0, nullable=False)
    novos_no_mes = db.Column(db.Integer, default=0, nullable=False)
    saidas_no_mes = db.Column(db.Integer, default=0, nullable=False)
    total_esteira = db.Column(db.Integer, default=0, nullable=False)
    total_em_andamento = db.Column(db.Integer, default=0, nullable=False)
    total_associado = db.Column(db.Integer, default=0, nullable=False)
    total_com_ug = db.Column(db.Integer, default=0, nullable=False)
    total_sem_ug = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=_agora)

    itens = db.relationship('HistoricoMensalAssociado', backref='resumo', lazy='dynamic',
                            cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'ano_mes': self.ano_mes,
            'total_associados': self.total_associados,
            'novos_no_mes': self.novos_no_mes,
            'saidas_no_mes': self.saidas_no_mes,
            'total_esteira': self.total_esteira,
            'total_em_andamento': self.total_em_andamento,
            'total_associado': self.total_associado,
            'total_com_ug': self.total_com_ug,
            'total_sem_ug': self.total_sem_ug,
            'created_at': _iso(self.created_at),
        }


class HistoricoMensalAssociado(db.Model):
    """Foto de uma entrada do controle clube em um mês"""
    __tablename__ = 'historico_mensal_associados'

    id = db.Column(db.Integer, primary_key=True)
    ano_mes = db.Column(db.String(7), nullable=False, index=True)
    resumo_id = db.Column(db.Integer, db.ForeignKey('historico_mensal_resumo.id'), nullable=False)
    controle_id = db.Column(db.Integer, nullable=False, index=True)
    proposta_id = db.Column(db.Integer)
    uc_id = db.Column(db.Integer)
    ug_id = db.Column(db.Integer)
    nome_cliente = db.Column(db.String(200))
    numero_uc = db.Column(db.String(50))
    numero_proposta = db.Column(db.String(50))
    apelido_uc = db.Column(db.String(100))
    status_troca = db.Column(db.String(30), nullable=False)
    ug_nome = db.Column(db.String(200))
    consumo_medio = db.Column(db.Numeric(10, 2))
    consumo_calibrado = db.Column(db.Numeric(10, 2))
    calibragem = db.Column(db.Numeric(10, 2))
    desconto_tarifa = db.Column(db.String(10))
    desconto_bandeira = db.Column(db.String(10))
    consultor = db.Column(db.String(200))
    data_entrada_controle = db.Column(db.DateTime)
    data_assinatura = db.Column(db.DateTime)
    data_em_andamento = db.Column(db.DateTime)
    data_titularidade = db.Column(db.Date)
    data_alocacao_ug = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=_agora)

    def to_dict(self):
        return {
            'controle_id': self.controle_id,
            'ano_mes': self.ano_mes,
            'nome_cliente': self.nome_cliente,
            'numero_uc': self.numero_uc,
            'numero_proposta': self.numero_proposta,
            'apelido_uc': self.apelido_uc,
            'status_troca': self.status_troca,
            'ug_nome': self.ug_nome,
            'consumo_medio': _num(self.consumo_medio),
            'consumo_calibrado': _num(self.consumo_calibrado),
            'calibragem': _num(self.calibragem),
            'desconto_tarifa': self.desconto_tarifa,
            'desconto_bandeira': self.desconto_bandeira,
            'consultor': self.consultor,
            'data_entrada_controle': _iso(self.data_entrada_controle),
            'data_assinatura': _iso(self.data_assinatura),
            'data_em_andamento': _iso(self.data_em_andamento),
            'data_titularidade': _iso(self.data_titularidade),
            'data_alocacao_ug': _iso(self.data_alocacao_ug),
        }
