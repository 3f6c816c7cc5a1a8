class SocketTransport:
    """Room-based publish/subscribe over a Flask-SocketIO server.

    Works outside of a Socket.IO request context, so background timers can
    broadcast too.
    """

    def __init__(self, socketio, namespace='/ws'):
        self.socketio = socketio
        self.namespace = namespace

    def join(self, connection, channel):
        self.socketio.server.enter_room(connection, channel, namespace=self.namespace)

    def leave(self, connection, channel):
        self.socketio.server.leave_room(connection, channel, namespace=self.namespace)

    def emit(self, event, data, channel):
        self.socketio.emit(event, data, to=channel, namespace=self.namespace)

    def send(self, event, data, connection):
        self.socketio.emit(event, data, to=connection, namespace=self.namespace)
