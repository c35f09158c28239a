import unittest

from flask import jsonify

from aupus.middleware import check_permission
from aupus.services.permissoes import ResolvedorPermissoes, PERMISSOES_POR_ROLE
from tests.base import AupusTestCase

CONSULTOR = {
    'dashboard.view', 'usuarios.view', 'usuarios.create', 'usuarios.edit',
    'propostas.view', 'propostas.create', 'propostas.edit', 'propostas.change_status',
    'unidades.view', 'unidades.create', 'unidades.edit', 'unidades.convert_ug',
    'controle.view', 'controle.create', 'controle.edit', 'controle.calibragem', 'controle.manage_ug',
    'prospec.view', 'prospec.create', 'prospec.edit', 'configuracoes.view', 'notificacoes.view',
}

VENDEDOR = {
    'dashboard.view', 'usuarios.view', 'propostas.view', 'propostas.create', 'propostas.edit',
    'unidades.view', 'unidades.create', 'unidades.edit', 'prospec.view', 'prospec.create',
    'prospec.edit', 'controle.view', 'notificacoes.view',
}

GERENTE = {
    'dashboard.view', 'usuarios.view', 'usuarios.create', 'propostas.view', 'propostas.create',
    'propostas.edit', 'unidades.view', 'unidades.create', 'unidades.edit', 'prospec.view',
    'prospec.create', 'prospec.edit', 'controle.view', 'notificacoes.view',
}

TODAS = set().union(*PERMISSOES_POR_ROLE.values())


class ResolvedorPermissoesTests(unittest.TestCase):
    def setUp(self):
        self.resolvedor = ResolvedorPermissoes()

    def test_superusuarios_passam_sempre(self):
        """admin e analista passam inclusive com permissões inexistentes"""
        for role in ('admin', 'analista'):
            self.assertTrue(self.resolvedor.permite(role, ['usuarios.delete']))
            self.assertTrue(self.resolvedor.permite(role, ['lixo.qualquer', '???']))
            self.assertTrue(self.resolvedor.permite(role, []))

    def test_analista_nao_esta_na_tabela(self):
        self.assertNotIn('analista', PERMISSOES_POR_ROLE)
        self.assertEqual(self.resolvedor.permissoes_do_role('analista'), frozenset())

    def test_tabelas_exatas(self):
        self.assertEqual(set(PERMISSOES_POR_ROLE['consultor']), CONSULTOR)
        self.assertEqual(set(PERMISSOES_POR_ROLE['vendedor']), VENDEDOR)
        self.assertEqual(set(PERMISSOES_POR_ROLE['gerente']), GERENTE)

    def test_consultor_permite_somente_o_conjunto(self):
        for permissao in TODAS:
            self.assertEqual(self.resolvedor.permite('consultor', [permissao]), permissao in CONSULTOR, permissao)
        self.assertFalse(self.resolvedor.permite('consultor', ['usuarios.delete']))

    def test_vendedor_permite_somente_o_conjunto(self):
        for permissao in TODAS:
            self.assertEqual(self.resolvedor.permite('vendedor', [permissao]), permissao in VENDEDOR, permissao)
        self.assertFalse(self.resolvedor.permite('vendedor', ['propostas.delete']))

    def test_basta_uma_permissao(self):
        self.assertTrue(self.resolvedor.permite('vendedor', ['propostas.delete', 'propostas.view']))

    def test_lista_vazia_libera(self):
        for role in ('consultor', 'gerente', 'vendedor'):
            self.assertTrue(self.resolvedor.permite(role, []))

    def test_role_desconhecido_nao_tem_permissoes(self):
        self.assertFalse(self.resolvedor.permite('estagiario', ['dashboard.view']))

    def test_tabela_imutavel(self):
        with self.assertRaises(TypeError):
            PERMISSOES_POR_ROLE['vendedor'] = frozenset({'usuarios.delete'})
        with self.assertRaises(AttributeError):
            PERMISSOES_POR_ROLE['vendedor'].add('usuarios.delete')


class CheckPermissionTests(AupusTestCase):
    def registrar_rotas_teste(self):
        @self.app.route('/teste/so-permissao')
        @check_permission('usuarios.delete')
        def so_permissao():
            return jsonify({'success': True})

    def test_vendedor_recebe_403(self):
        proposta = self.criar_controle().proposta
        resposta = self.client.delete(f'/api/propostas/{proposta.id}', headers=self.headers(self.vendedor))
        self.assertEqual(resposta.status_code, 403)
        corpo = resposta.get_json()
        self.assertFalse(corpo['success'])
        self.assertEqual(corpo['message'], 'Acesso negado. Permissão insuficiente.')

    def test_analista_acessa_tudo(self):
        proposta = self.criar_controle().proposta
        resposta = self.client.delete(f'/api/propostas/{proposta.id}', headers=self.headers(self.analista))
        self.assertEqual(resposta.status_code, 200)

    def test_rota_sem_permissao_basta_estar_autenticado(self):
        resposta = self.client.get('/api/auth/me', headers=self.headers(self.vendedor))
        self.assertEqual(resposta.status_code, 200)
        self.assertEqual(resposta.get_json()['data']['email'], self.vendedor.email)

    def test_independente_sem_token_vira_auth_error(self):
        resposta = self.client.get('/teste/so-permissao')
        self.assertEqual(resposta.status_code, 401)
        self.assertEqual(resposta.get_json()['error_type'], 'auth_error')

    def test_independente_autentica_sozinho(self):
        self.assertEqual(self.client.get('/teste/so-permissao', headers=self.headers(self.admin)).status_code, 200)
        self.assertEqual(self.client.get('/teste/so-permissao', headers=self.headers(self.consultor)).status_code, 403)

    def test_usuario_inativo_nunca_passa(self):
        inativo = self.criar_usuario('consultor', 'inativo@aupus.test', ativo=False)
        for url in ('/api/auth/me', '/api/usuarios', '/api/controle', '/api/propostas'):
            resposta = self.client.get(url, headers=self.headers(inativo))
            self.assertEqual(resposta.status_code, 401, url)
            self.assertEqual(resposta.get_json()['error_type'], 'user_inactive', url)
