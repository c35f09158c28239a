"""
Aupus - Configurações do sistema
Valores gravados como texto e convertidos pelo tipo declarado.
"""
import json
import logging

from ..errors import ErroValidacao, NaoEncontrado
from ..models.database import db, Configuracao

logger = logging.getLogger(__name__)

TIPOS = ('string', 'number', 'boolean', 'json')

# chave → (valor, tipo, grupo, descrição)
PADROES = {
    'calibragem_global': ('0.00', 'number', 'calibragem', 'Percentual de calibragem aplicado ao consumo médio'),
    'economia_padrao': ('20.00', 'number', 'propostas', 'Desconto padrão na tarifa (%)'),
    'bandeira_padrao': ('20.00', 'number', 'propostas', 'Desconto padrão na bandeira (%)'),
    'recorrencia_padrao': ('3%', 'string', 'propostas', 'Recorrência padrão do consultor'),
    'empresa_nome': ('Aupus Energia', 'string', 'geral', 'Nome da empresa'),
    'sistema_versao': ('2.0', 'string', 'geral', 'Versão do sistema'),
}


def converter_valor(valor, tipo):
    """Texto gravado → valor tipado."""
    if valor is None:
        return None
    if tipo == 'number':
        try:
            return float(valor)
        except (TypeError, ValueError):
            return 0.0
    if tipo == 'boolean':
        return str(valor).strip().lower() in ('1', 'true', 'sim', 'yes', 'on')
    if tipo == 'json':
        try:
            return json.loads(valor)
        except (TypeError, ValueError):
            return None
    return valor


def serializar_valor(valor, tipo):
    """Valor tipado → texto gravado."""
    if tipo not in TIPOS:
        raise ErroValidacao(f"Tipo '{tipo}' não é válido", errors={'tipo': tipo})
    if tipo == 'json':
        return valor if isinstance(valor, str) else json.dumps(valor, ensure_ascii=False)
    if tipo == 'boolean':
        if isinstance(valor, str):
            return '1' if converter_valor(valor, 'boolean') else '0'
        return '1' if valor else '0'
    if tipo == 'number':
        try:
            float(valor)
        except (TypeError, ValueError):
            raise ErroValidacao('Valor numérico inválido', errors={'valor': valor})
    return str(valor)


def obter_valor(chave, padrao=None):
    config = Configuracao.query.filter_by(chave=chave).first()
    if config is None:
        if chave in PADROES and padrao is None:
            valor, tipo, _, _ = PADROES[chave]
            return converter_valor(valor, tipo)
        return padrao
    return converter_valor(config.valor, config.tipo)


def definir_valor(chave, valor, usuario=None, tipo=None, commit=True):
    """Cria ou atualiza a configuração. Retorna (config, valor_anterior)."""
    config = Configuracao.query.filter_by(chave=chave).first()
    anterior = converter_valor(config.valor, config.tipo) if config else None

    tipo = tipo or (config.tipo if config else None) or (PADROES[chave][1] if chave in PADROES else 'string')
    texto = serializar_valor(valor, tipo)

    if config is None:
        padrao = PADROES.get(chave)
        config = Configuracao(
            chave=chave,
            grupo=padrao[2] if padrao else 'geral',
            descricao=padrao[3] if padrao else None,
        )
        db.session.add(config)

    config.tipo = tipo
    config.valor = texto
    config.updated_by = usuario.id if usuario is not None else None

    if commit:
        db.session.commit()
    logger.info(f"Configuração '{chave}' atualizada: {anterior} → {config.valor}")
    return config, anterior


def buscar(chave):
    config = Configuracao.query.filter_by(chave=chave).first()
    if config is None:
        raise NaoEncontrado(f"Configuração '{chave}' não encontrada")
    return config


def por_grupo(grupo):
    configs = Configuracao.query.filter_by(grupo=grupo).order_by(Configuracao.chave).all()
    return {c.chave: converter_valor(c.valor, c.tipo) for c in configs}


def aplicar_lote(configuracoes, usuario=None):
    """
    Atualiza várias chaves de uma vez.
    Retorna {chave: True|False}; falhas individuais não interrompem o lote.
    """
    resultados = {}
    for chave, dados in (configuracoes or {}).items():
        valor = dados.get('valor') if isinstance(dados, dict) else dados
        tipo = dados.get('tipo') if isinstance(dados, dict) else None
        try:
            definir_valor(chave, valor, usuario=usuario, tipo=tipo, commit=False)
            resultados[chave] = True
        except ErroValidacao as e:
            logger.error(f"Erro ao configurar '{chave}': {e.message}")
            resultados[chave] = False
    db.session.commit()
    return resultados


def garantir_padroes():
    """Insere as chaves padrão ausentes (bootstrap)."""
    criadas = 0
    for chave, (valor, tipo, grupo, descricao) in PADROES.items():
        if Configuracao.query.filter_by(chave=chave).first() is None:
            db.session.add(Configuracao(chave=chave, valor=valor, tipo=tipo, grupo=grupo, descricao=descricao))
            criadas += 1
    if criadas:
        db.session.commit()
        logger.info(f"{criadas} configuração(ões) padrão criada(s)")
    return criadas


def calibragem_global():
    return float(obter_valor('calibragem_global') or 0.0)
