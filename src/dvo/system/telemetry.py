class Telemetry:
    def __init__(self):
        self.frames = []

    def log_frame(self, idx: int, rec: dict):
        rec["frame_idx"] = idx
        self.frames.append(rec)

    def failures(self) -> list[dict]:
        return [rec for rec in self.frames if rec.get("estimate") and not rec["estimate"]["valid"]]
