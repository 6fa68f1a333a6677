"""
Base class for pipeline steps.
"""
from pipeline.models import Context, Signal


class Step:
    """
    One stage of the extraction pipeline.

    Subclasses implement call() and return a Signal; they read and write the
    run's Context and never share state between runs.
    """

    name = "step"

    async def call(self, ctx: Context) -> Signal:
        raise NotImplementedError(f"{self.__class__.__name__} must implement call")

    @staticmethod
    def continue_() -> Signal:
        return Signal.CONTINUE

    @staticmethod
    def stop_success() -> Signal:
        return Signal.STOP_SUCCESS

    @staticmethod
    def stop_failure() -> Signal:
        return Signal.STOP_FAILURE

    def __repr__(self):
        return f"<{self.__class__.__name__}>"
