from voice_client.cli import cli


cli(prog_name="voice-client")
