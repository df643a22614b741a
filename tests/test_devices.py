"""
Tests for audio card resolution.
"""

from audiohost.core.errors import ExecutionError
from audiohost.core.services.devices import enumerate_playback_devices, resolve_audio_card


class TestResolveAudioCard:
    def test_match(self, aplay_output):
        d = resolve_audio_card("USB Composite Device", aplay_output)
        assert d.identifier == "2"
        assert d.matched is True
        assert d.alsa_device == "hw:2"

    def test_no_match_falls_back_to_card_0(self):
        d = resolve_audio_card("USB Composite Device", "card 0: PCH [HDA Intel PCH], device 0: ALC")
        assert d.identifier == "0"
        assert d.matched is False

    def test_empty_output(self):
        d = resolve_audio_card("USB Composite Device", "")
        assert (d.identifier, d.matched) == ("0", False)

    def test_first_match_wins(self):
        text = (
            "card 1: A [USB Composite Device], device 0: x\n"
            "card 3: B [USB Composite Device], device 0: y\n"
        )
        assert resolve_audio_card("USB Composite Device", text).identifier == "1"

    def test_pattern_is_literal(self):
        text = "card 4: X [Focusrite (2i2) USB], device 0: z\n"
        assert resolve_audio_card("(2i2)", text).identifier == "4"
        assert resolve_audio_card("2.2", text).matched is False

    def test_case_sensitive(self, aplay_output):
        assert resolve_audio_card("usb composite device", aplay_output).matched is False

    def test_subdevice_lines_ignored(self):
        text = "  Subdevice #0: USB Composite Device\n"
        assert resolve_audio_card("USB Composite Device", text).matched is False

    def test_empty_pattern_never_matches(self, aplay_output):
        assert resolve_audio_card("", aplay_output).matched is False

    def test_pure(self, aplay_output):
        a = resolve_audio_card("USB Composite Device", aplay_output)
        b = resolve_audio_card("USB Composite Device", aplay_output)
        assert a == b
        assert a is not b


class TestEnumeratePlaybackDevices:
    def test_returns_stdout(self, mock_runner, aplay_output):
        mock_runner.set_response(["aplay", "-l"], stdout=aplay_output)
        assert enumerate_playback_devices(mock_runner) == aplay_output

    def test_failure_is_empty(self, mock_runner):
        mock_runner.set_failure(["aplay"], stderr="aplay: no soundcards found")
        assert enumerate_playback_devices(mock_runner) == ""

    def test_missing_tool_is_empty(self, mock_runner):
        mock_runner.set_exception(["aplay"], ExecutionError("Executable not found: aplay"))
        assert enumerate_playback_devices(mock_runner) == ""
