import numpy as np

def Rt_to_T(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    T = np.eye(4)
    T[:3,:3] = R
    T[:3, 3] = t.reshape(3)
    return T

def inv_T(T: np.ndarray) -> np.ndarray:
    R = T[:3,:3]; t = T[:3,3]
    Ti = np.eye(4)
    Ti[:3,:3] = R.T
    Ti[:3, 3] = -R.T @ t
    return Ti

def hat(w: np.ndarray) -> np.ndarray:
    wx, wy, wz = np.asarray(w, dtype=np.float64).reshape(3)
    return np.array([[0.0, -wz, wy], [wz, 0.0, -wx], [-wy, wx, 0.0]])

def exp_se3(xi: np.ndarray) -> np.ndarray:
    """
    Exponential map se(3) -> SE(3).

    xi = (v, w): translational part first, rotational part last.
    """
    xi = np.asarray(xi, dtype=np.float64).reshape(6)
    v, w = xi[:3], xi[3:]
    theta = float(np.linalg.norm(w))
    W = hat(w)
    W2 = W @ W
    if theta < 1e-10:
        # second order Taylor expansion
        R = np.eye(3) + W + 0.5 * W2
        V = np.eye(3) + 0.5 * W + W2 / 6.0
    else:
        a = np.sin(theta) / theta
        b = (1.0 - np.cos(theta)) / theta**2
        c = (theta - np.sin(theta)) / theta**3
        R = np.eye(3) + a * W + b * W2
        V = np.eye(3) + b * W + c * W2
    return Rt_to_T(R, V @ v)

def log_so3(R: np.ndarray) -> np.ndarray:
    cos_theta = np.clip((np.trace(R) - 1.0) * 0.5, -1.0, 1.0)
    theta = float(np.arccos(cos_theta))
    vee = np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]])
    if theta < 1e-10:
        return 0.5 * vee
    if np.pi - theta < 1e-6:
        # near pi: axis from the symmetric part
        M = 0.5 * (R + np.eye(3))
        axis = np.sqrt(np.clip(np.diag(M), 0.0, None))
        k = int(np.argmax(axis))
        axis = M[:, k] / (axis[k] + 1e-12)
        axis /= np.linalg.norm(axis) + 1e-12
        return theta * axis
    return theta / (2.0 * np.sin(theta)) * vee

def log_se3(T: np.ndarray) -> np.ndarray:
    """Inverse of exp_se3, returns (v, w)."""
    w = log_so3(T[:3, :3])
    theta = float(np.linalg.norm(w))
    W = hat(w)
    W2 = W @ W
    if theta < 1e-10:
        V_inv = np.eye(3) - 0.5 * W + W2 / 12.0
    else:
        a = np.sin(theta) / theta
        b = (1.0 - np.cos(theta)) / theta**2
        V_inv = np.eye(3) - 0.5 * W + (1.0 / theta**2) * (1.0 - a / (2.0 * b)) * W2
    return np.concatenate([V_inv @ T[:3, 3], w])

def rotation_angle(T: np.ndarray) -> float:
    """Rotation magnitude of T in radians."""
    cos_theta = np.clip((np.trace(T[:3, :3]) - 1.0) * 0.5, -1.0, 1.0)
    return float(np.arccos(cos_theta))

def translation_norm(T: np.ndarray) -> float:
    return float(np.linalg.norm(T[:3, 3]))
