"""A minimal agent: `agent-host examples/echo_agent --watch`."""

BASE_PROMPT = "I am a simple agent that repeats what you tell it."

FEW_SHOTS = """Q: Repeat after me: hello
Ask Func[echo]: hello
Func[echo] says: hello
A: hello

Q: Bump your counter
Ask Func[count]: 
Func[count] says: 3
A: The counter is now at 3."""


def echo(message):
    return message.text


def count(message, user_storage):
    seen = user_storage.get("counter") if user_storage.has("counter") else 0
    user_storage.set("counter", seen + 1)
    return str(seen + 1)
