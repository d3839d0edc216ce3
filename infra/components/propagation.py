import pulumi
import pulumiverse_time as time


class PropagationDelay(pulumi.ComponentResource):
    """Fixed wait after the last policy attachment. IAM offers nothing to poll."""

    def __init__(
        self,
        name: str,
        seconds: int,
        depends_on: list[pulumi.Resource] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__("cluster-identity:iam:PropagationDelay", name, None, opts)

        self.sleep = time.Sleep(
            f"{name}-sleep",
            create_duration=f"{seconds}s",
            opts=pulumi.ResourceOptions(parent=self, depends_on=depends_on or []),
        )
        self.ready = self.sleep.id

        self.register_outputs({"ready": self.ready})

    def gate(self, value: pulumi.Input) -> pulumi.Output:
        """Resolve value only once the delay has elapsed."""
        return pulumi.Output.all(self.ready, value).apply(lambda args: args[1])
