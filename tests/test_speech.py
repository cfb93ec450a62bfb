import logging

from ollama_desk.exceptions import SpeechDeviceError
from ollama_desk.speech import SpeechEdgeDetector, open_speech


def test_edge_fires_once_per_episode(make_speech):
    _, speech = make_speech([True, True, False, False, True, False])
    detector = SpeechEdgeDetector(speech)

    stopped = [detector.poll() for _ in range(6)]

    assert stopped == [False, False, True, False, False, True]


def test_repaint_requested_only_while_speaking(make_speech):
    _, speech = make_speech([True, True, False, False])
    detector = SpeechEdgeDetector(speech)
    repaints = []

    for _ in range(4):
        detector.poll(lambda: repaints.append(1))

    assert len(repaints) == 2


def test_read_failure_counts_as_silence(make_speech):
    _, speech = make_speech([True, SpeechDeviceError("device gone"), True])
    detector = SpeechEdgeDetector(speech)

    assert detector.poll() is False
    assert detector.poll() is True
    assert detector.is_speaking is False
    assert detector.poll() is False


def test_missing_device_never_speaks():
    detector = SpeechEdgeDetector(None)
    repaints = []

    assert [detector.poll(lambda: repaints.append(1)) for _ in range(3)] == [False, False, False]
    assert repaints == []


def test_open_speech_degrades_to_none(caplog):
    def broken():
        raise SpeechDeviceError("no audio hardware")

    with caplog.at_level(logging.ERROR):
        assert open_speech(broken) is None

    assert "no audio hardware" in caplog.text


def test_shared_speech_forwards_commands(make_speech):
    device, speech = make_speech([True])

    speech.speak("hello")
    assert speech.is_speaking() is True
    speech.stop()
    speech.close()

    assert device.spoken == ["hello"]
    assert device.stops == 2
