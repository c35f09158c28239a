"""
Aupus - Permissões por role
Tabela fechada role → permissões. admin e analista não passam pela tabela.
"""
from types import MappingProxyType

# Superusuários: acesso livre, independente da tabela
ROLES_SUPERUSUARIO = frozenset({'admin', 'analista'})

PERMISSOES_POR_ROLE = MappingProxyType({
    'admin': frozenset({
        'dashboard.view',
        'usuarios.view', 'usuarios.create', 'usuarios.edit', 'usuarios.delete',
        'propostas.view', 'propostas.create', 'propostas.edit', 'propostas.delete',
        'propostas.change_status',
        'unidades.view', 'unidades.create', 'unidades.edit', 'unidades.delete',
        'unidades.convert_ug',
        'prospec.view', 'prospec.create', 'prospec.edit', 'prospec.delete',
        'controle.view', 'controle.create', 'controle.edit', 'controle.calibragem',
        'controle.manage_ug',
        'configuracoes.view', 'configuracoes.edit',
        'relatorios.view', 'relatorios.export',
        'notificacoes.view',
    }),
    'consultor': frozenset({
        'dashboard.view',
        'usuarios.view', 'usuarios.create', 'usuarios.edit',
        'propostas.view', 'propostas.create', 'propostas.edit', 'propostas.change_status',
        'unidades.view', 'unidades.create', 'unidades.edit', 'unidades.convert_ug',
        'controle.view', 'controle.create', 'controle.edit', 'controle.calibragem',
        'controle.manage_ug',
        'prospec.view', 'prospec.create', 'prospec.edit',
        'configuracoes.view',
        'notificacoes.view',
    }),
    'gerente': frozenset({
        'dashboard.view',
        'usuarios.view', 'usuarios.create',
        'propostas.view', 'propostas.create', 'propostas.edit',
        'unidades.view', 'unidades.create', 'unidades.edit',
        'prospec.view', 'prospec.create', 'prospec.edit',
        'controle.view',
        'notificacoes.view',
    }),
    'vendedor': frozenset({
        'dashboard.view',
        'usuarios.view',
        'propostas.view', 'propostas.create', 'propostas.edit',
        'unidades.view', 'unidades.create', 'unidades.edit',
        'prospec.view', 'prospec.create', 'prospec.edit',
        'controle.view',
        'notificacoes.view',
    }),
})


class ResolvedorPermissoes:
    """Decide allow/deny para um role e uma lista de permissões (basta uma)."""

    def __init__(self, tabela=PERMISSOES_POR_ROLE, superusuarios=ROLES_SUPERUSUARIO):
        self.tabela = MappingProxyType({role: frozenset(perms) for role, perms in tabela.items()})
        self.superusuarios = frozenset(superusuarios)

    def permissoes_do_role(self, role):
        return self.tabela.get(role, frozenset())

    def permite(self, role, permissoes=()):
        if role in self.superusuarios:
            return True
        if not permissoes:
            return True
        return bool(self.permissoes_do_role(role).intersection(permissoes))
