"""Socket event names shared by the server and the push subscriber."""

STATUS_UPDATE_EVENT = "call-status-update"
REGISTER_EVENT = "register-call"
UNREGISTER_EVENT = "unregister-call"
WELCOME_EVENT = "message"
NEW_MESSAGE_EVENT = "new-message"
