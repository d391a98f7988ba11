# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np
import pytest
import soundfile as sf

import transcribe_wav


@pytest.mark.asyncio
async def test_wrong_sample_rate_is_rejected(tmp_path):
    path = tmp_path / "narrowband.wav"
    sf.write(str(path), np.zeros(8000, dtype=np.float32), 8000)

    with pytest.raises(SystemExit, match="expected 16000 Hz audio, got 8000 Hz"):
        await transcribe_wav.main(str(path), True)


@pytest.mark.asyncio
async def test_stereo_input_is_rejected(tmp_path):
    path = tmp_path / "stereo.wav"
    sf.write(str(path), np.zeros((16000, 2), dtype=np.float32), 16000)

    with pytest.raises(SystemExit, match="expected mono audio, got 2 channels"):
        await transcribe_wav.main(str(path), True)
