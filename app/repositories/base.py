"""Base store with the lookups every table needs.

Stores receive the SQLAlchemy session from the composition root
(app.services.reconciliation) instead of reaching for db.session.
"""


class BaseStore:
    model = None

    def __init__(self, session):
        self.session = session

    def query(self):
        return self.session.query(self.model)

    def get(self, id):
        if id is None:
            return None
        return self.session.get(self.model, id)

    def add(self, obj):
        self.session.add(obj)
        self.session.flush()
        return obj
