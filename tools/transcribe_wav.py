# tools/transcribe_wav.py
"""
Run a WAV file through the full dictation pipeline and print committed text.

    python tools/transcribe_wav.py hello.wav [--raw]

Models and the LM server come from DICTATION_* environment variables.
The file must be 16 kHz mono.
"""
import argparse
import asyncio
import dataclasses

import numpy as np
import soundfile as sf

from adapters.asr.whisper_adapter import FasterWhisperASR
from adapters.llm.local_lm import LocalLM
from audio.pcm import make_frame
from config import PipelineConfig
from constants import AUDIO_FRAME_MS, AUDIO_SAMPLE_RATE_HZ, AUDIO_SAMPLES_PER_FRAME
from orchestrator.events import Notice, OutputEvent, OutputKind
from orchestrator.pipeline import PipelineOrchestrator


class PrintConsumer:
    def on_output(self, event: OutputEvent) -> None:
        if event.kind is OutputKind.COMMIT:
            tag = "refined" if event.refined else "raw"
            print(f"[{event.utterance_id}] ({tag}) {event.text}", flush=True)

    def on_notice(self, notice: Notice) -> None:
        print(f"!! {notice.kind.value}: {notice.message}", flush=True)


async def main(path: str, raw: bool) -> None:
    audio, sr = sf.read(path, dtype="float32", always_2d=False)
    if sr != AUDIO_SAMPLE_RATE_HZ:
        raise SystemExit(f"{path}: expected {AUDIO_SAMPLE_RATE_HZ} Hz audio, got {sr} Hz")
    if audio.ndim != 1:
        raise SystemExit(f"{path}: expected mono audio, got {audio.shape[1]} channels")

    config = PipelineConfig.load_from_env()
    if raw:
        config = dataclasses.replace(config, refinement_enabled=False)

    pipeline = PipelineOrchestrator(
        config,
        asr=FasterWhisperASR(language=config.language),
        lm=LocalLM(base_url=config.lm_base_url),
        consumer=PrintConsumer(),
    )
    await pipeline.start()

    n_frames = audio.shape[0] // AUDIO_SAMPLES_PER_FRAME
    for i in range(n_frames):
        chunk = audio[i * AUDIO_SAMPLES_PER_FRAME:(i + 1) * AUDIO_SAMPLES_PER_FRAME]
        pipeline.push_audio(make_frame(i, np.asarray(chunk), i * AUDIO_FRAME_MS))
        # Pace like a live source so the ingest queue never overruns
        await asyncio.sleep(0)

    await pipeline.stop()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("wav")
    parser.add_argument("--raw", action="store_true", help="skip LM refinement")
    args = parser.parse_args()
    asyncio.run(main(args.wav, args.raw))
