import unittest
from datetime import date, timedelta

from aupus.errors import ErroValidacao, TransicaoInvalida
from aupus.models.database import ControleClube
from aupus.services.status_troca import (
    normalizar_status_troca, validar_status_troca, valores_armazenados, pode_transicionar,
    transicionar, corrigir_status, definir_data_titularidade, encontrar_status_invalidos,
    normalizar_status_proposta, validar_status_proposta,
)


def _controle(status):
    controle = ControleClube(nome_cliente='Cliente')
    controle.status_troca_bruto = status
    return controle


class NormalizacaoTests(unittest.TestCase):
    def test_aliases_legados(self):
        self.assertEqual(normalizar_status_troca('Aguardando'), 'Esteira')
        self.assertEqual(normalizar_status_troca('Finalizado'), 'Associado')
        self.assertEqual(normalizar_status_troca(' Em andamento '), 'Em andamento')
        self.assertIsNone(normalizar_status_troca(None))

    def test_desconhecido_volta_intacto(self):
        self.assertEqual(normalizar_status_troca('Saindo'), 'Saindo')
        self.assertFalse(validar_status_troca('Saindo'))
        self.assertTrue(validar_status_troca('Aguardando'))

    def test_valores_armazenados_incluem_legados(self):
        self.assertEqual(set(valores_armazenados('Esteira')), {'Esteira', 'Aguardando'})
        self.assertEqual(set(valores_armazenados('Finalizado')), {'Associado', 'Finalizado'})
        self.assertEqual(valores_armazenados('Em andamento'), ['Em andamento'])

    def test_leitura_e_escrita_normalizadas_no_modelo(self):
        controle = _controle('Aguardando')
        self.assertEqual(controle.status_troca, 'Esteira')
        self.assertEqual(controle.status_troca_bruto, 'Aguardando')

        controle.status_troca = 'Finalizado'
        self.assertEqual(controle.status_troca_bruto, 'Associado')

    def test_status_da_proposta(self):
        self.assertEqual(normalizar_status_proposta(None), 'Aguardando')
        self.assertEqual(normalizar_status_proposta('Fechado'), 'Fechada')
        self.assertEqual(normalizar_status_proposta('Perdido'), 'Recusada')
        self.assertTrue(validar_status_proposta('Em Análise'))
        self.assertFalse(validar_status_proposta('Rascunho'))

    def test_varredura_de_invalidos(self):
        controles = [_controle('Esteira'), _controle('Finalizado'), _controle('Saindo')]
        controles[2].id = 3
        invalidos = encontrar_status_invalidos(controles)
        self.assertEqual(invalidos, [{'id': 3, 'status_troca': 'Saindo', 'nome_cliente': 'Cliente'}])


class TransicaoTests(unittest.TestCase):
    def test_avanco_um_passo(self):
        self.assertTrue(pode_transicionar('Esteira', 'Em andamento'))
        self.assertTrue(pode_transicionar('Aguardando', 'Em andamento'))
        self.assertTrue(pode_transicionar('Em andamento', 'Finalizado'))
        self.assertFalse(pode_transicionar('Esteira', 'Associado'))
        self.assertFalse(pode_transicionar('Associado', 'Esteira'))

    def test_transicionar_carimba_em_andamento(self):
        controle = _controle('Aguardando')
        anterior = transicionar(controle, 'Em andamento')
        self.assertEqual(anterior, 'Esteira')
        self.assertEqual(controle.status_troca_bruto, 'Em andamento')
        self.assertIsNotNone(controle.data_em_andamento)

        transicionar(controle, 'Finalizado')
        self.assertEqual(controle.status_troca_bruto, 'Associado')

    def test_mesmo_status_nao_muda_nada(self):
        controle = _controle('Esteira')
        self.assertEqual(transicionar(controle, 'Aguardando'), 'Esteira')
        self.assertIsNone(controle.data_em_andamento)

    def test_retrocesso_e_salto_sao_recusados(self):
        with self.assertRaises(TransicaoInvalida):
            transicionar(_controle('Em andamento'), 'Esteira')
        with self.assertRaises(TransicaoInvalida):
            transicionar(_controle('Esteira'), 'Associado')

    def test_status_invalido(self):
        with self.assertRaises(ErroValidacao):
            transicionar(_controle('Esteira'), 'Saindo')

    def test_correcao_administrativa_permite_retrocesso(self):
        controle = _controle('Finalizado')
        anterior = corrigir_status(controle, 'Esteira')
        self.assertEqual(anterior, 'Finalizado')
        self.assertEqual(controle.status_troca, 'Esteira')

    def test_correcao_de_status_invalido(self):
        controle = _controle('Saindo')
        corrigir_status(controle, 'Em andamento')
        self.assertEqual(controle.status_troca_bruto, 'Em andamento')
        with self.assertRaises(ErroValidacao):
            corrigir_status(controle, 'Saindo')


class DataTitularidadeTests(unittest.TestCase):
    def test_aceita_hoje_e_passado(self):
        controle = _controle('Esteira')
        self.assertEqual(definir_data_titularidade(controle, '2024-03-15'), date(2024, 3, 15))
        definir_data_titularidade(controle, date.today())
        self.assertEqual(controle.data_titularidade, date.today())

    def test_recusa_data_futura(self):
        with self.assertRaises(ErroValidacao):
            definir_data_titularidade(_controle('Esteira'), date.today() + timedelta(days=1))

    def test_recusa_texto_invalido(self):
        with self.assertRaises(ErroValidacao):
            definir_data_titularidade(_controle('Esteira'), '15/03/2024')
