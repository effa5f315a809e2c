"""
Continuation helpers on top of simpy.

Components never block inside an event handler: they schedule a callback for a
later simulated time and keep the returned process so it can be cancelled.
"""

import simpy


def call_later(env, delay, callback, *args):
    """Run callback(*args) after `delay` simulated time units. Interrupting the process cancels it."""
    def _run():
        try:
            yield env.timeout(delay)
        except simpy.Interrupt:
            return
        callback(*args)
    return env.process(_run())


class Continuations:
    """Tracks an entity's scheduled callbacks so they can all be cancelled at shutdown."""

    def __init__(self, env):
        self.env = env
        self._pending = set()

    def later(self, delay, callback, *args):
        process = call_later(self.env, delay, callback, *args)
        self.track(process)
        return process

    def track(self, process):
        def _done(event):
            self._pending.discard(process)
            # A process interrupted before its first step dies with the Interrupt itself
            if not event.ok and isinstance(event.value, simpy.Interrupt):
                event.defused = True

        self._pending.add(process)
        process.callbacks.append(_done)
        return process

    def cancel(self, process):
        if process.is_alive:
            try:
                process.interrupt("cancelled")
            except RuntimeError:
                pass # Process already finished or interrupted
        self._pending.discard(process)

    def cancel_all(self):
        for process in list(self._pending):
            self.cancel(process)

    def __len__(self):
        return len(self._pending)
