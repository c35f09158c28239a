"""
Aupus - Ciclo de vida do Controle Clube
Status da troca de titularidade e status das UCs dentro da proposta.

    Esteira  →  Em andamento  →  Associado

Valores legados (Aguardando / Finalizado) continuam aparecendo em linhas
antigas e são normalizados na leitura e na escrita.
"""
import logging
from datetime import date, datetime, timezone

from ..errors import TransicaoInvalida, ErroValidacao

logger = logging.getLogger(__name__)

STATUS_ESTEIRA = 'Esteira'
STATUS_EM_ANDAMENTO = 'Em andamento'
STATUS_ASSOCIADO = 'Associado'

STATUS_CANONICOS = (STATUS_ESTEIRA, STATUS_EM_ANDAMENTO, STATUS_ASSOCIADO)

ALIASES_LEGADOS = {
    'Aguardando': STATUS_ESTEIRA,
    'Finalizado': STATUS_ASSOCIADO,
}

# somente avanço de um passo; retrocesso é correção administrativa
TRANSICOES = {
    STATUS_ESTEIRA: (STATUS_EM_ANDAMENTO,),
    STATUS_EM_ANDAMENTO: (STATUS_ASSOCIADO,),
    STATUS_ASSOCIADO: (),
}

# Status da UC dentro do JSON da proposta
UC_AGUARDANDO = 'Aguardando'
UC_FECHADA = 'Fechada'
UC_RECUSADA = 'Recusada'
UC_CANCELADA = 'Cancelada'

STATUS_PROPOSTA = (UC_AGUARDANDO, UC_FECHADA, UC_RECUSADA, UC_CANCELADA)

ALIASES_PROPOSTA = {
    'Pendente': UC_AGUARDANDO,
    'Em Análise': UC_AGUARDANDO,
    'Fechado': UC_FECHADA,
    'Perdido': UC_RECUSADA,
    'Recusado': UC_RECUSADA,
}


def normalizar_status_troca(valor):
    """Converte aliases legados; valores desconhecidos são devolvidos intactos."""
    if valor is None:
        return None
    valor = str(valor).strip()
    return ALIASES_LEGADOS.get(valor, valor)


def validar_status_troca(valor):
    return normalizar_status_troca(valor) in STATUS_CANONICOS


def valores_armazenados(status):
    """Valores gravados que, normalizados, correspondem ao status (para filtros SQL)."""
    status = normalizar_status_troca(status)
    return [status] + [legado for legado, atual in ALIASES_LEGADOS.items() if atual == status]


def normalizar_status_proposta(valor):
    if not valor:
        return UC_AGUARDANDO
    valor = str(valor).strip()
    return ALIASES_PROPOSTA.get(valor, valor)


def validar_status_proposta(valor):
    return normalizar_status_proposta(valor) in STATUS_PROPOSTA


def encontrar_status_invalidos(controles):
    """
    Varredura de integridade: entradas cujo status não é canônico
    mesmo depois da normalização.
    """
    invalidos = []
    for controle in controles:
        if not validar_status_troca(controle.status_troca_bruto):
            invalidos.append({
                'id': controle.id,
                'status_troca': controle.status_troca_bruto,
                'nome_cliente': controle.nome_cliente,
            })
    if invalidos:
        logger.warning(f"Controle clube com status_troca inválido: {len(invalidos)} registro(s)")
    return invalidos


def pode_transicionar(atual, novo):
    atual = normalizar_status_troca(atual)
    novo = normalizar_status_troca(novo)
    return novo in TRANSICOES.get(atual, ())


def _carimbar(controle, status, quando):
    if status == STATUS_EM_ANDAMENTO and controle.data_em_andamento is None:
        controle.data_em_andamento = quando


def transicionar(controle, novo_status, quando=None):
    """
    Avança a troca de titularidade um passo.
    Retorna o status anterior.
    """
    novo = normalizar_status_troca(novo_status)
    if novo not in STATUS_CANONICOS:
        raise ErroValidacao('Status de troca inválido', errors={'status_troca': novo_status})

    anterior = controle.status_troca
    if anterior == novo:
        return anterior
    if not pode_transicionar(anterior, novo):
        raise TransicaoInvalida(
            f"Transição não permitida: {anterior} → {novo}",
            errors={'status_atual': anterior, 'status_solicitado': novo},
        )

    controle.status_troca = novo
    _carimbar(controle, novo, quando or datetime.now(timezone.utc))
    logger.info(f"Controle {controle.id}: status_troca {anterior} → {novo}")
    return anterior


def corrigir_status(controle, novo_status, quando=None):
    """Correção administrativa: aceita qualquer status canônico, inclusive retrocesso."""
    novo = normalizar_status_troca(novo_status)
    if novo not in STATUS_CANONICOS:
        raise ErroValidacao('Status de troca inválido', errors={'status_troca': novo_status})

    anterior = controle.status_troca_bruto
    controle.status_troca = novo
    _carimbar(controle, novo, quando or datetime.now(timezone.utc))
    logger.warning(f"Controle {controle.id}: correção administrativa de status {anterior} → {novo}")
    return anterior


def registrar_assinatura(controle, quando=None):
    """Termo assinado: a entrada entra (ou volta) para a esteira."""
    controle.data_assinatura = quando or datetime.now(timezone.utc)
    if controle.status_troca_bruto is None:
        controle.status_troca = STATUS_ESTEIRA


def definir_data_titularidade(controle, nova_data):
    if isinstance(nova_data, str):
        try:
            nova_data = date.fromisoformat(nova_data[:10])
        except ValueError:
            raise ErroValidacao('Data de titularidade inválida', errors={'data_titularidade': nova_data})
    if nova_data > date.today():
        raise ErroValidacao('Data de titularidade não pode ser futura',
                            errors={'data_titularidade': nova_data.isoformat()})
    controle.data_titularidade = nova_data
    return nova_data
