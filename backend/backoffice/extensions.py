# Overview: Flask extension instances for database and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
# compare_type: autogenerate also picks up column type changes (cents columns, JSON blobs)
migrate = Migrate(compare_type=True)
