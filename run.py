# Eventlet monkey patching MUST be first before any other imports
import eventlet
eventlet.monkey_patch()

import os  # noqa: E402

from streakr import create_app, db, socketio  # noqa: E402
from streakr.models import (  # noqa: E402
    League,
    Match,
    PanicVoid,
    Pick,
    Question,
    Round,
    Season,
    User,
)

app = create_app()


@app.shell_context_processor
def make_shell_context():
    return {
        "db": db,
        "User": User,
        "League": League,
        "Season": Season,
        "Round": Round,
        "Match": Match,
        "Question": Question,
        "Pick": Pick,
        "PanicVoid": PanicVoid,
    }


if __name__ == "__main__":
    socketio.run(
        app,
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 5000)),
        debug=app.config.get("DEBUG", False),
    )
