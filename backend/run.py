from bingo import create_app, socketio
from bingo.services.game.scheduler import resume_timers

app = create_app()

if __name__ == '__main__':
    # Pick up a countdown or draw sequence that was running before a restart
    resume_timers(app)
    # Use SocketIO server to enable websockets in dev
    socketio.run(app, debug=True)
