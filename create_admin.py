import os
from dotenv import load_dotenv
load_dotenv()

from aupus.app import create_app
from aupus.models.database import db, Usuario
from aupus.services.configuracao_service import garantir_padroes

email = os.environ.get('ADMIN_EMAIL', 'admin@aupusenergia.com.br')
senha = os.environ.get('ADMIN_SENHA')
if not senha:
    raise SystemExit('Defina ADMIN_SENHA no ambiente ou no .env')

app = create_app(os.environ.get('FLASK_ENV', 'production'))
with app.app_context():
    db.create_all()
    garantir_padroes()
    if not Usuario.query.filter_by(email=email).first():
        u = Usuario(nome=os.environ.get('ADMIN_NOME', 'Administrador'), email=email, role='admin')
        u.set_senha(senha)
        db.session.add(u)
        db.session.commit()
        print(f'Admin criado! ID: {u.id}')
    else:
        print('Admin ja existe')
