"""Example: in-process channel relay (no server)."""

import logging

from relay import CallbackHandle, ChannelRegistry

logging.basicConfig(level=logging.INFO)


def main() -> None:
    registry = ChannelRegistry()

    alice = CallbackHandle(lambda env: print("alice got", env.to_dict()), handle_id="alice")
    bob = CallbackHandle(lambda env: print("bob got", env.to_dict()), handle_id="bob")
    registry.subscribe("room1", alice)
    registry.subscribe("room1", bob)

    registry.publish("room1", {"event": "user.joined", "user_id": 101})

    registry.unsubscribe("room1", alice)
    alice.close()
    registry.publish("room1", "hello")

    bob.close()
    # closed handles are pruned on the next publish
    print("delivered:", registry.publish("room1", "anyone?"))
    print("channels left:", registry.channel_count())


if __name__ == "__main__":
    main()
