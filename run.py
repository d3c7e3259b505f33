# Eventlet monkey patching MUST be first before any other imports
import eventlet
eventlet.monkey_patch()

import os

from pickem import create_app, db, socketio
from pickem.models import AdminAction, AnonymousPick, Game, Pick, User
from pickem.services.settlement_service import settlement_service

app = create_app(os.environ.get("FLASK_CONFIG", "default"))


@app.shell_context_processor
def make_shell_context():
    return {
        "db": db,
        "User": User,
        "Game": Game,
        "Pick": Pick,
        "AnonymousPick": AnonymousPick,
        "AdminAction": AdminAction,
        "settlement_service": settlement_service,
    }


if __name__ == "__main__":
    socketio.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
