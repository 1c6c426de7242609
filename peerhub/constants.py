# Relay wire protocol constants (envelope keys and event kinds)

PROTOCOL_VERSION = 1

# Envelope keys
K_V = "v"
K_T = "t"
K_ARGS = "a"
K_TS = "ts"

# Inbound events
T_NAME = "name"
T_MESSAGE = "message"
T_UPDATE = "update"
T_SIGNAL = "signal"
T_PEER_OFFER = "peerOffer"
T_PEER_ANSWER = "peerAnswer"
T_PEER_ICE = "peerIce"

# Outbound presence events
T_ID = "id"
T_CLIENTS = "clients"
T_CLIENT_CONNECTION = "client-connection"
T_CLIENT_DISCONNECT = "client-disconnect"

# Routed message kinds (closed set)
RK_OFFER = "offer"
RK_ANSWER = "answer"
RK_ICE = "ice-candidate"
RK_SIGNAL = "generic-signal"
RK_POSITION = "position-update"
RK_CHAT = "chat"

ROUTE_KINDS = frozenset({RK_OFFER, RK_ANSWER, RK_ICE, RK_SIGNAL, RK_POSITION, RK_CHAT})

# Routed kind -> event name on the wire
ROUTE_EVENTS = {
    RK_OFFER: T_PEER_OFFER,
    RK_ANSWER: T_PEER_ANSWER,
    RK_ICE: T_PEER_ICE,
    RK_SIGNAL: T_SIGNAL,
    RK_POSITION: T_UPDATE,
    RK_CHAT: T_MESSAGE,
}

# Negotiation events carry the target id back to the recipient:
#   <event>(target_id, payload, sender_id)
# Everything else is delivered as <event>(payload, sender).
ADDRESSED_KINDS = frozenset({RK_OFFER, RK_ANSWER, RK_ICE, RK_SIGNAL})

SIGNAL_EVENTS = {
    T_SIGNAL: RK_SIGNAL,
    T_PEER_OFFER: RK_OFFER,
    T_PEER_ANSWER: RK_ANSWER,
    T_PEER_ICE: RK_ICE,
}

# Connection states
S_UNREGISTERED = "UNREGISTERED"
S_NAMED = "NAMED"

# Public attribute keys
P_ID = "id"
P_NAME = "name"
P_X = "x"
P_Y = "y"

NAME_MAX_CHARS = 32
