"""audiohost — provisioning and boot-time launch for an audio workstation host."""

__version__ = "0.1.0"
