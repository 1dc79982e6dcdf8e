from coreason_terminal.config import TerminalConfig
from coreason_terminal.runtime import SandboxController
from coreason_terminal.runtimes.docker import DockerController


class SandboxFactory:
    """
    Factory to create SandboxController instances based on configuration.
    """

    @staticmethod
    def get_controller(config: TerminalConfig) -> SandboxController:
        """
        Returns an instance of the configured SandboxController.
        """
        if config.runtime == "docker":
            return DockerController(
                image=config.docker_image,
                interpreter=config.interpreter,
                container_source_path=config.container_source_path,
                network_mode=config.network_mode,
                mem_limit=config.mem_limit,
                memswap_limit=config.memswap_limit,
                cpu_period=config.cpu_period,
                cpu_quota=config.cpu_quota,
                pids_limit=config.pids_limit,
                demux_stream=config.demux_stream,
                source_dir=config.source_dir,
            )
        else:
            # This should be unreachable due to Pydantic validation, but for safety:
            raise ValueError(f"Unknown runtime: {config.runtime}")  # pragma: no cover
