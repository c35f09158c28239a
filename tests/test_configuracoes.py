from aupus.errors import ErroValidacao
from aupus.models.database import Auditoria
from aupus.services import configuracao_service
from tests.base import AupusTestCase


class ConfiguracaoServiceTests(AupusTestCase):
    def test_conversao_por_tipo(self):
        self.assertEqual(configuracao_service.converter_valor('12.5', 'number'), 12.5)
        self.assertTrue(configuracao_service.converter_valor('sim', 'boolean'))
        self.assertEqual(configuracao_service.converter_valor('{"a": [1]}', 'json'), {'a': [1]})
        self.assertEqual(configuracao_service.serializar_valor(True, 'boolean'), '1')
        with self.assertRaises(ErroValidacao):
            configuracao_service.serializar_valor('abc', 'number')
        with self.assertRaises(ErroValidacao):
            configuracao_service.serializar_valor('x', 'data')

    def test_padrao_sem_registro(self):
        self.assertEqual(configuracao_service.obter_valor('economia_padrao'), 20.0)
        self.assertEqual(configuracao_service.calibragem_global(), 0.0)
        self.assertIsNone(configuracao_service.obter_valor('nao_existe'))

    def test_garantir_padroes_idempotente(self):
        criadas = configuracao_service.garantir_padroes()
        self.assertEqual(criadas, len(configuracao_service.PADROES))
        self.assertEqual(configuracao_service.garantir_padroes(), 0)
        self.assertEqual(configuracao_service.por_grupo('calibragem'), {'calibragem_global': 0.0})


class ConfiguracaoApiTests(AupusTestCase):
    def setUp(self):
        super().setUp()
        configuracao_service.garantir_padroes()

    def test_consultor_le_mas_nao_altera(self):
        headers = self.headers(self.consultor)
        self.assertEqual(self.client.get('/api/configuracoes', headers=headers).status_code, 200)
        resposta = self.client.put('/api/configuracoes/empresa_nome', headers=headers, json={'valor': 'X'})
        self.assertEqual(resposta.status_code, 403)

    def test_vendedor_nao_le(self):
        self.assertEqual(self.client.get('/api/configuracoes', headers=self.headers(self.vendedor)).status_code, 403)

    def test_atualizar_audita(self):
        resposta = self.client.put('/api/configuracoes/empresa_nome', headers=self.headers(self.admin),
                                   json={'valor': 'Aupus Solar'})
        self.assertEqual(resposta.status_code, 200)
        self.assertEqual(resposta.get_json()['data']['valor'], 'Aupus Solar')

        evento = Auditoria.query.filter_by(entidade='configuracoes', entidade_id='empresa_nome').one()
        self.assertEqual(evento.dados_anteriores, {'valor': 'Aupus Energia'})
        self.assertEqual(evento.usuario_id, self.admin.id)

    def test_lote_com_falha_parcial(self):
        resposta = self.client.put('/api/configuracoes/bulk', headers=self.headers(self.admin), json={
            'configuracoes': {
                'economia_padrao': {'valor': 25, 'tipo': 'number'},
                'bandeira_padrao': {'valor': 'muito', 'tipo': 'number'},
            }
        })
        self.assertEqual(resposta.status_code, 200)
        self.assertEqual(resposta.get_json()['data'], {'economia_padrao': True, 'bandeira_padrao': False})
        self.assertEqual(configuracao_service.obter_valor('economia_padrao'), 25.0)

    def test_chave_inexistente(self):
        resposta = self.client.get('/api/configuracoes/nao_existe', headers=self.headers(self.admin))
        self.assertEqual(resposta.status_code, 404)
