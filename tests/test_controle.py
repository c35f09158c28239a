from aupus.errors import ErroValidacao
from aupus.models.database import Auditoria, ControleClube, Configuracao
from aupus.services import controle_service, unidade_service
from tests.base import AupusTestCase


class PropostaControleTests(AupusTestCase):
    def _criar_proposta(self):
        resposta = self.client.post('/api/propostas', headers=self.headers(self.consultor), json={
            'nome_cliente': 'Padaria Central',
            'cpf_cnpj': '12.345.678/0001-90',
            'unidades_consumidoras': [
                {'numero_unidade': '2001', 'status': 'Fechado', 'consumo_medio': 300},
                {'numero_unidade': '2002'},
            ],
        })
        self.assertEqual(resposta.status_code, 201)
        return resposta.get_json()['data']

    def test_uc_fechada_entra_no_clube_na_esteira(self):
        proposta = self._criar_proposta()
        ucs = {uc['numero_unidade']: uc['status'] for uc in proposta['unidades_consumidoras']}
        self.assertEqual(ucs, {'2001': 'Fechada', '2002': 'Aguardando'})

        controles = ControleClube.query.all()
        self.assertEqual(len(controles), 1)
        self.assertEqual(controles[0].status_troca, 'Esteira')
        self.assertIsNotNone(controles[0].data_assinatura)
        self.assertEqual(controles[0].nome_cliente, 'Padaria Central')

    def test_data_da_proposta_invalida(self):
        headers = self.headers(self.consultor)
        for data in ('15/03/2025', 20250315):
            resposta = self.client.post('/api/propostas', headers=headers, json={
                'nome_cliente': 'Padaria Central',
                'data_proposta': data,
                'unidades_consumidoras': [{'numero_unidade': '2001'}],
            })
            self.assertEqual(resposta.status_code, 422)
            self.assertIn('data_proposta', resposta.get_json()['errors'])

        resposta = self.client.post('/api/propostas', headers=headers, json={
            'nome_cliente': 'Padaria Central',
            'data_proposta': '2025-03-15',
            'unidades_consumidoras': [{'numero_unidade': '2001'}],
        })
        self.assertEqual(resposta.status_code, 201)
        self.assertEqual(resposta.get_json()['data']['data_proposta'], '2025-03-15')

    def test_numero_sequencial(self):
        primeira = self._criar_proposta()
        self.assertRegex(primeira['numero_proposta'], r'^\d{4}/001$')

    def test_uc_sai_e_volta_para_o_clube(self):
        proposta = self._criar_proposta()
        url = f"/api/propostas/{proposta['id']}/unidades/2001/status"
        headers = self.headers(self.consultor)

        resposta = self.client.patch(url, headers=headers, json={'status': 'Recusada'})
        self.assertEqual(resposta.status_code, 200)
        controle = ControleClube.query.one()
        self.assertIsNotNone(controle.deleted_at)
        self.assertEqual(Auditoria.query.filter_by(entidade='controle_clube', acao='REMOVIDO').count(), 1)

        resposta = self.client.patch(url, headers=headers, json={'status': 'Fechada'})
        self.assertEqual(resposta.status_code, 200)
        self.assertEqual(resposta.get_json()['data']['controle']['id'], controle.id)
        self.assertIsNone(ControleClube.query.one().deleted_at)
        self.assertEqual(Auditoria.query.filter_by(entidade='controle_clube', acao='REATIVADO').count(), 1)

    def test_uc_aguardando_fechada_cria_controle(self):
        proposta = self._criar_proposta()
        resposta = self.client.patch(f"/api/propostas/{proposta['id']}/unidades/2002/status",
                                     headers=self.headers(self.consultor), json={'status': 'Fechada'})
        self.assertEqual(resposta.status_code, 200)
        self.assertEqual(ControleClube.query.filter(ControleClube.deleted_at.is_(None)).count(), 2)

    def test_status_de_uc_invalido(self):
        proposta = self._criar_proposta()
        resposta = self.client.patch(f"/api/propostas/{proposta['id']}/unidades/2002/status",
                                     headers=self.headers(self.consultor), json={'status': 'Rascunho'})
        self.assertEqual(resposta.status_code, 422)

    def test_proposta_de_outra_equipe(self):
        proposta = self._criar_proposta()
        outro = self.criar_usuario('consultor', 'outro@aupus.test')
        resposta = self.client.get(f"/api/propostas/{proposta['id']}", headers=self.headers(outro))
        self.assertEqual(resposta.status_code, 403)

    def test_excluir_proposta_remove_controles(self):
        proposta = self._criar_proposta()
        resposta = self.client.delete(f"/api/propostas/{proposta['id']}", headers=self.headers(self.admin))
        self.assertEqual(resposta.status_code, 200)
        self.assertIsNotNone(ControleClube.query.one().deleted_at)


class StatusTrocaApiTests(AupusTestCase):
    def _patch(self, controle, status, usuario=None, sufixo=''):
        return self.client.patch(f'/api/controle/{controle.id}/status{sufixo}',
                                 headers=self.headers(usuario or self.consultor),
                                 json={'status_troca': status})

    def test_ciclo_completo(self):
        controle = self.criar_controle()

        resposta = self._patch(controle, 'Em andamento')
        self.assertEqual(resposta.status_code, 200)
        self.assertIsNotNone(resposta.get_json()['data']['data_em_andamento'])

        resposta = self._patch(controle, 'Finalizado')
        self.assertEqual(resposta.status_code, 200)
        self.assertEqual(resposta.get_json()['data']['status_troca'], 'Associado')
        self.assertEqual(controle.status_troca_bruto, 'Associado')

    def test_retrocesso_recusado(self):
        controle = self.criar_controle(status='Em andamento')
        resposta = self._patch(controle, 'Esteira')
        self.assertEqual(resposta.status_code, 422)
        self.assertEqual(resposta.get_json()['error_type'], 'invalid_transition')

    def test_legado_lido_como_canonico(self):
        controle = self.criar_controle(status='Aguardando')
        resposta = self.client.get(f'/api/controle/{controle.id}', headers=self.headers(self.consultor))
        self.assertEqual(resposta.get_json()['data']['status_troca'], 'Esteira')

        resposta = self.client.get('/api/controle?status_troca=Esteira', headers=self.headers(self.admin))
        self.assertEqual(resposta.get_json()['total'], 1)

    def test_correcao_somente_admin_ou_analista(self):
        controle = self.criar_controle(status='Associado')
        self.assertEqual(self._patch(controle, 'Esteira', sufixo='/corrigir').status_code, 403)

        resposta = self._patch(controle, 'Esteira', usuario=self.analista, sufixo='/corrigir')
        self.assertEqual(resposta.status_code, 200)
        self.assertEqual(controle.status_troca, 'Esteira')

        evento = Auditoria.query.filter_by(sub_acao='CORRECAO_ADMINISTRATIVA').one()
        self.assertTrue(evento.evento_critico)
        self.assertEqual(evento.usuario_id, self.analista.id)
        self.assertIn('Status corrigido', controle.observacoes)

    def test_data_titularidade_futura(self):
        controle = self.criar_controle()
        resposta = self.client.patch(f'/api/controle/{controle.id}/data-titularidade',
                                     headers=self.headers(self.consultor),
                                     json={'data_titularidade': '2999-01-01'})
        self.assertEqual(resposta.status_code, 422)

        resposta = self.client.patch(f'/api/controle/{controle.id}/data-titularidade',
                                     headers=self.headers(self.consultor),
                                     json={'data_titularidade': '2024-05-10'})
        self.assertEqual(resposta.status_code, 200)
        self.assertEqual(resposta.get_json()['data']['data_titularidade'], '2024-05-10')

    def test_vendedor_nao_edita(self):
        controle = self.criar_controle()
        self.assertEqual(self._patch(controle, 'Em andamento', usuario=self.vendedor).status_code, 403)

    def test_validar_e_normalizar_status(self):
        self.criar_controle(status='Aguardando', numero_uc='1001')
        invalido = self.criar_controle(status='Saindo', numero_uc='1002')
        self.criar_controle(status='Associado', numero_uc='1003')

        resposta = self.client.get('/api/controle/validar-status', headers=self.headers(self.admin))
        dados = resposta.get_json()['data']
        self.assertEqual([i['id'] for i in dados['invalidos']], [invalido.id])
        self.assertEqual(dados['legados'], 1)

        resposta = self.client.post('/api/controle/normalizar-status', headers=self.headers(self.admin))
        self.assertEqual(resposta.get_json()['data']['alterados'], 1)
        self.assertEqual(ControleClube.query.filter_by(status_troca_bruto='Aguardando').count(), 0)
        self.assertEqual(invalido.status_troca_bruto, 'Saindo')

    def test_estatisticas(self):
        self.criar_controle(status='Aguardando', numero_uc='1001')
        self.criar_controle(status='Em andamento', numero_uc='1002')
        self.criar_controle(status='Finalizado', numero_uc='1003')
        self.criar_controle(status='Saindo', numero_uc='1004')

        resposta = self.client.get('/api/controle/estatisticas', headers=self.headers(self.consultor))
        dados = resposta.get_json()['data']
        self.assertEqual(dados['total'], 4)
        self.assertEqual(dados['por_status'], {'Esteira': 1, 'Em andamento': 1, 'Associado': 1})
        self.assertEqual(dados['status_invalidos'], 1)
        self.assertEqual(dados['sem_ug'], 4)


class CalibragemTests(AupusTestCase):
    def test_calibragem_individual(self):
        controle = self.criar_controle(consumo=500)
        resposta = self.client.patch(f'/api/controle/{controle.id}/calibragem',
                                     headers=self.headers(self.consultor), json={'calibragem_individual': 10})
        self.assertEqual(resposta.status_code, 200)
        self.assertEqual(resposta.get_json()['data']['valor_calibrado'], 550.0)

    def test_calibragem_fora_da_faixa(self):
        controle = self.criar_controle()
        for valor in (150, -60, 'abc'):
            resposta = self.client.patch(f'/api/controle/{controle.id}/calibragem',
                                         headers=self.headers(self.consultor), json={'calibragem_individual': valor})
            self.assertEqual(resposta.status_code, 422, valor)

    def test_global_respeita_individual(self):
        comum = self.criar_controle(consumo=500, numero_uc='1001')
        individual = self.criar_controle(consumo=1000, numero_uc='1002')
        controle_service.definir_calibragem_individual(individual, -10)

        negado = self.client.post('/api/controle/calibragem-global', headers=self.headers(self.consultor),
                                  json={'calibragem_global': 20})
        self.assertEqual(negado.status_code, 403)

        resposta = self.client.post('/api/controle/calibragem-global', headers=self.headers(self.admin),
                                    json={'calibragem_global': 20})
        self.assertEqual(resposta.status_code, 200)
        self.assertEqual(resposta.get_json()['data']['controles_recalculados'], 1)

        self.assertEqual(float(comum.valor_calibrado), 600.0)
        self.assertEqual(float(individual.valor_calibrado), 900.0)
        self.assertEqual(Configuracao.query.filter_by(chave='calibragem_global').one().valor, '20')
        self.assertTrue(Auditoria.query.filter_by(evento_tipo='CALIBRAGEM_GLOBAL').one().evento_critico)

    def test_remover_individual_volta_para_global(self):
        controle = self.criar_controle(consumo=500)
        controle_service.definir_calibragem_individual(controle, 10)
        controle_service.definir_calibragem_individual(controle, None)
        self.assertIsNone(controle.calibragem_individual)
        self.assertEqual(float(controle.valor_calibrado), 500.0)


class UgTests(AupusTestCase):
    def setUp(self):
        super().setUp()
        self.controle = self.criar_controle()
        self.ug = unidade_service.criar({'numero_unidade': '9001', 'gerador': True, 'nome_usina': 'Usina Sol',
                                         'potencia_cc': 10, 'fator_capacidade': 30})

    def test_vincular_e_desvincular(self):
        url = f'/api/controle/{self.controle.id}/ug'
        resposta = self.client.post(url, headers=self.headers(self.consultor), json={'ug_id': self.ug.id})
        self.assertEqual(resposta.status_code, 200)
        dados = resposta.get_json()['data']
        self.assertEqual(dados['ug_nome'], 'Usina Sol')
        self.assertIsNotNone(dados['data_alocacao_ug'])

        resposta = self.client.delete(url, headers=self.headers(self.consultor))
        self.assertEqual(resposta.status_code, 200)
        self.assertIsNone(resposta.get_json()['data']['ug_id'])

    def test_so_aceita_unidade_geradora(self):
        comum = unidade_service.criar({'numero_unidade': '9002'})
        resposta = self.client.post(f'/api/controle/{self.controle.id}/ug', headers=self.headers(self.consultor),
                                    json={'ug_id': comum.id})
        self.assertEqual(resposta.status_code, 422)

    def test_vendedor_nao_gerencia_ug(self):
        resposta = self.client.post(f'/api/controle/{self.controle.id}/ug', headers=self.headers(self.vendedor),
                                    json={'ug_id': self.ug.id})
        self.assertEqual(resposta.status_code, 403)

    def test_desvincular_sem_ug(self):
        with self.assertRaises(ErroValidacao):
            controle_service.desvincular_ug(self.controle)
