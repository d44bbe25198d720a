from __future__ import annotations


class PipelineError(Exception):
    """Base class for failures that end a generation job."""


class NoClipsAvailable(PipelineError):
    def __init__(self, category: str) -> None:
        self.category = category
        super().__init__(f"No valid clips found for category: {category}")


class InsufficientClips(PipelineError):
    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(
            f"Not enough clips available. Required {required} clips, but only found {available}."
        )


class HookResolutionFailure(PipelineError):
    def __init__(self, category: str, candidates: int) -> None:
        self.category = category
        self.candidates = candidates
        super().__init__(
            f"Hook resolution failed: none of the {candidates} clip(s) in category '{category}' exist on disk"
        )


class TranscodeFailure(PipelineError):
    def __init__(self, index: int, detail: str) -> None:
        self.index = index
        self.detail = detail
        super().__init__(f"Failed to trim clip {index + 1}: {detail}")


class VoiceoverConfigMissing(PipelineError):
    def __init__(self, setting: str = "ELEVENLABS_API_KEY") -> None:
        self.setting = setting
        super().__init__(f"{setting} not set")


class VoiceoverAPIFailure(PipelineError):
    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Failed to generate voiceover: speech API error ({status_code}): {detail}")


class VoiceoverTranscodeFailure(PipelineError):
    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Failed to generate voiceover: transcode error: {detail}")


class CompositionFailure(PipelineError):
    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Final composition failed: {detail}")


class NonHookCompositionUnsupported(PipelineError):
    def __init__(self) -> None:
        super().__init__("Non-hook video generation is not supported: a hook clip is required")


class DirectoryCreationFailure(PipelineError):
    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"Failed to create required directory {path}: {detail}")


class MediaToolUnavailable(PipelineError):
    def __init__(self, binary: str) -> None:
        self.binary = binary
        super().__init__(f"Media tool not found: {binary}")


class JobQueueFull(Exception):
    """Raised at admission time; never stored on a job."""

    def __init__(self, running: int, pending: int) -> None:
        self.running = running
        self.pending = pending
        super().__init__(f"Generation queue is full ({running} running, {pending} waiting)")
