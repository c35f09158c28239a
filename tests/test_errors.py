from flask import g, jsonify

from aupus.errors import ErroValidacao
from aupus.middleware import protegido
from aupus.models.database import db, Usuario
from tests.base import AupusTestCase


class HandlersTests(AupusTestCase):
    def registrar_rotas_teste(self):
        @self.app.route('/teste/quebra')
        def quebra():
            raise RuntimeError('falha inesperada')

        @self.app.route('/teste/validacao')
        def validacao():
            raise ErroValidacao('Dados inválidos', errors={'campo': 'Obrigatório'})

        @self.app.route('/teste/falha-banco', methods=['POST'])
        @protegido()
        def falha_banco():
            db.session.expire(g.usuario_atual)
            duplicado = Usuario(nome='Duplicado', email=g.jwt_claims['email'], role='vendedor')
            duplicado.set_senha('senha123')
            db.session.add(duplicado)
            db.session.flush()
            return jsonify({'success': True})

        @self.app.route('/teste/ok')
        def ok():
            return jsonify({'success': True})

    def test_rota_inexistente(self):
        resposta = self.client.get('/api/nao-existe')
        self.assertEqual(resposta.status_code, 404)
        self.assertEqual(resposta.get_json()['error_type'], 'route_not_found')

    def test_metodo_nao_permitido(self):
        resposta = self.client.post('/teste/ok')
        self.assertEqual(resposta.status_code, 405)
        corpo = resposta.get_json()
        self.assertEqual(corpo['error_type'], 'method_not_allowed')
        self.assertIn('GET', corpo['allowed_methods'])

    def test_erro_classificado(self):
        resposta = self.client.get('/teste/validacao')
        self.assertEqual(resposta.status_code, 422)
        self.assertEqual(resposta.get_json(), {
            'success': False,
            'message': 'Dados inválidos',
            'error_type': 'validation_error',
            'errors': {'campo': 'Obrigatório'},
        })

    def test_registro_inexistente(self):
        resposta = self.client.get('/api/controle/999', headers=self.headers(self.admin))
        self.assertEqual(resposta.status_code, 404)
        self.assertEqual(resposta.get_json()['error_type'], 'not_found')

    def test_erro_generico_sem_debug(self):
        resposta = self.client.get('/teste/quebra')
        self.assertEqual(resposta.status_code, 500)
        corpo = resposta.get_json()
        self.assertEqual(corpo['message'], 'Erro interno do servidor.')
        self.assertEqual(corpo['error_type'], 'server_error')
        self.assertIsNone(corpo['debug_info'])

    def test_erro_generico_com_debug(self):
        self.app.debug = True
        corpo = self.client.get('/teste/quebra').get_json()
        self.assertEqual(corpo['message'], 'falha inesperada')
        self.assertEqual(corpo['debug_info']['exception'], 'RuntimeError')
        self.assertEqual(corpo['debug_info']['file'], 'test_errors.py')

    def test_health(self):
        resposta = self.client.get('/health')
        self.assertEqual(resposta.get_json(), {'status': 'ok', 'service': 'Aupus', 'cache': True})

    def test_cors_expoe_headers_do_token(self):
        resposta = self.client.get('/api/auth/me', headers=dict(self.headers(self.consultor), Origin='http://painel'))
        expostos = resposta.headers.get('Access-Control-Expose-Headers', '')
        for header in ('X-New-Token', 'X-Token-Refreshed', 'X-RateLimit-Remaining'):
            self.assertIn(header, expostos)

    def test_falha_de_banco_em_rota_autenticada(self):
        resposta = self.client.post('/teste/falha-banco', headers=self.headers(self.consultor))
        self.assertEqual(resposta.status_code, 500)
        corpo = resposta.get_json()
        self.assertEqual(corpo['error_type'], 'database_error')
        self.assertFalse(corpo['success'])

        # sessão utilizável depois do rollback
        self.assertEqual(Usuario.query.filter_by(email=self.consultor.email).count(), 1)
        self.assertEqual(self.client.get('/api/auth/me', headers=self.headers(self.consultor)).status_code, 200)
