import time
from unittest import mock

from flask import jsonify

from aupus.middleware import jwt_auto_refresh
from aupus.models.database import db
from tests.base import AupusTestCase


class JwtAutoRefreshTests(AupusTestCase):
    def registrar_rotas_teste(self):
        @self.app.route('/teste/auto-refresh')
        @jwt_auto_refresh
        def so_refresh():
            return jsonify({'success': True})

    def test_token_perto_de_expirar_e_renovado(self):
        antigo = self.token(self.consultor, segundos=600)
        resposta = self.client.get('/api/auth/me', headers=self.headers(token=antigo))

        self.assertEqual(resposta.status_code, 200)
        self.assertEqual(resposta.headers['X-Token-Refreshed'], 'true')
        novo = resposta.headers['X-New-Token']
        self.assertEqual(resposta.headers['Authorization'], f'Bearer {novo}')
        self.assertNotEqual(novo, antigo)

        self.assertEqual(self.client.get('/api/auth/me', headers=self.headers(token=novo)).status_code, 200)
        velho = self.client.get('/api/auth/me', headers=self.headers(token=antigo))
        self.assertEqual(velho.status_code, 401)
        self.assertEqual(velho.get_json()['error_type'], 'token_blacklisted')

    def test_token_novo_preserva_identidade_e_claims(self):
        resposta = self.client.get('/api/auth/me', headers=self.headers(self.vendedor, segundos=600))
        claims = self.app.extensions['aupus.tokens'].decodificar(resposta.headers['X-New-Token'])
        self.assertEqual(claims['sub'], str(self.vendedor.id))
        self.assertEqual(claims['role'], 'vendedor')
        self.assertEqual(claims['email'], self.vendedor.email)

    def test_token_com_folga_nao_e_renovado(self):
        resposta = self.client.get('/api/auth/me', headers=self.headers(self.consultor, segundos=3600))
        self.assertEqual(resposta.status_code, 200)
        self.assertNotIn('X-New-Token', resposta.headers)
        self.assertNotIn('X-Token-Refreshed', resposta.headers)
        self.assertNotIn('X-Token-Warning', resposta.headers)

    def test_sem_token_segue_sem_headers(self):
        resposta = self.client.get('/teste/auto-refresh')
        self.assertEqual(resposta.status_code, 200)
        self.assertNotIn('X-New-Token', resposta.headers)

    def test_token_expirado_ganha_ultima_chance(self):
        resposta = self.client.get('/teste/auto-refresh', headers=self.headers(self.consultor, segundos=-10))
        self.assertEqual(resposta.status_code, 200)
        self.assertEqual(resposta.headers['X-Token-Refreshed'], 'true')

        novo = resposta.headers['X-New-Token']
        self.assertEqual(self.client.get('/api/auth/me', headers=self.headers(token=novo)).status_code, 200)

    def test_falha_ao_renovar_expirado_responde_401(self):
        self.consultor.is_active = False
        db.session.commit()
        resposta = self.client.get('/teste/auto-refresh', headers=self.headers(self.consultor, segundos=-10))
        self.assertEqual(resposta.status_code, 401)
        self.assertEqual(resposta.get_json()['error_type'], 'token_expired')

    def test_falha_ao_renovar_token_valido_devolve_aviso(self):
        self.consultor.is_active = False
        db.session.commit()
        resposta = self.client.get('/teste/auto-refresh', headers=self.headers(self.consultor, segundos=600))

        self.assertEqual(resposta.status_code, 200)
        self.assertNotIn('X-New-Token', resposta.headers)
        self.assertEqual(resposta.headers['X-Token-Warning'], 'true')
        self.assertTrue(590 <= int(resposta.headers['X-Token-Expires-In']) <= 600)

    def test_token_invalido_na_rota_independente(self):
        resposta = self.client.get('/teste/auto-refresh', headers={'Authorization': 'Bearer lixo'})
        self.assertEqual(resposta.status_code, 401)
        self.assertEqual(resposta.get_json()['error_type'], 'token_invalid')

    def test_token_revogado_nao_e_renovado(self):
        token = self.token(self.consultor, segundos=-10)
        store = self.app.extensions['aupus.tokens']
        store.revogar(store.decodificar(token, permitir_expirado=True))

        resposta = self.client.get('/teste/auto-refresh', headers=self.headers(token=token))
        self.assertEqual(resposta.status_code, 401)
        self.assertEqual(resposta.get_json()['error_type'], 'token_blacklisted')

    def test_janela_de_renovacao_encerrada(self):
        store = self.app.extensions['aupus.tokens']
        claims = store.decodificar(self.token(self.consultor))
        claims['iat'] -= store.refresh_ttl + 60
        self.assertFalse(store.pode_renovar(claims))

    def test_token_antigo_aceito_durante_a_carencia(self):
        self.app.extensions['aupus.tokens'].carencia_blacklist = 30
        antigo = self.token(self.consultor, segundos=600)

        resposta = self.client.get('/api/auth/me', headers=self.headers(token=antigo))
        self.assertEqual(resposta.headers['X-Token-Refreshed'], 'true')

        # requisição concorrente ainda com o token antigo
        self.assertEqual(self.client.get('/api/auth/me', headers=self.headers(token=antigo)).status_code, 200)

        with mock.patch('aupus.services.token_service.time.time', return_value=time.time() + 31):
            velho = self.client.get('/api/auth/me', headers=self.headers(token=antigo))
        self.assertEqual(velho.status_code, 401)
        self.assertEqual(velho.get_json()['error_type'], 'token_blacklisted')

    def test_nova_revogacao_nao_estende_a_carencia(self):
        store = self.app.extensions['aupus.tokens']
        claims = store.decodificar(self.token(self.consultor))
        with mock.patch('aupus.services.token_service.time.time') as agora:
            agora.return_value = 1000.0
            store.revogar(claims, carencia=30)
            agora.return_value = 1020.0
            store.revogar(claims, carencia=30)
            self.assertEqual(store.cache.get(store.PREFIXO + claims['jti']), 1030.0)
