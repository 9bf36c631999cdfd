"""
Fixed walk cycle for uploaded skeletal models.

Joints are found by exact name; the motion is a hand-authored set of
phase-offset sinusoids and ignores whatever animation the asset ships with.
Angles are radians, applied as Euler rotations on the named axis.
"""

import math
from dataclasses import dataclass, field

WALK_SPEED = 3.0
LEG_SWING = 0.3
ARM_SWING = 0.3
TURNTABLE_SPEED = 0.3


@dataclass(frozen=True)
class JointMotion:
    joint: str
    axis: str
    amplitude: float
    phase: float = 0.0
    offset: float = 0.0
    rectified: bool = False  # only the backward half of the swing: max(0, -sin)

    def angle(self, t: float) -> float:
        wave = math.sin(t * WALK_SPEED + self.phase)
        if self.rectified:
            wave = max(0.0, -wave)
        return wave * self.amplitude + self.offset


WALK_CYCLE = (
    JointMotion("L_Thigh", "x", LEG_SWING, offset=3.0),
    JointMotion("L_Calf", "x", LEG_SWING * 0.5, rectified=True),
    JointMotion("R_Thigh", "x", LEG_SWING, phase=math.pi, offset=3.5),
    JointMotion("R_Calf", "x", LEG_SWING * 0.5, phase=math.pi, rectified=True),
    JointMotion("L_Upperarm", "y", ARM_SWING, phase=2 * math.pi),
    JointMotion("R_Upperarm", "y", ARM_SWING),
)


@dataclass
class Pose:
    time: float
    root_yaw: float
    joints: dict[str, dict[str, float]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"time": self.time, "root_yaw": self.root_yaw, "joints": self.joints}


class ModelRig:
    def __init__(self, joint_names, motions=WALK_CYCLE):
        names = set(joint_names)
        self.bound = [m for m in motions if m.joint in names]
        self.missing = [m.joint for m in motions if m.joint not in names]

    def pose(self, t: float) -> Pose:
        joints: dict[str, dict[str, float]] = {}
        for motion in self.bound:
            joints.setdefault(motion.joint, {})[motion.axis] = motion.angle(t)
        return Pose(time=t, root_yaw=t * TURNTABLE_SPEED, joints=joints)


@dataclass
class LoadedModel:
    name: str
    url: str
    joint_names: list[str]
    rig: ModelRig
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "url": self.url,
            "joints": self.joint_names,
            "animated_joints": [m.joint for m in self.rig.bound],
            "missing_joints": self.rig.missing,
            "warnings": self.warnings,
        }
