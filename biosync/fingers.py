# Finger codes as enumerated by the directory: left pinky (1) to left thumb (5),
# then right thumb (6) to right pinky (10).
FINGER_LABELS = {
    1: "Mínimo Esquerdo",
    2: "Anelar Esquerdo",
    3: "Médio Esquerdo",
    4: "Indicador Esquerdo",
    5: "Polegar Esquerdo",
    6: "Polegar Direito",
    7: "Indicador Direito",
    8: "Médio Direito",
    9: "Anelar Direito",
    10: "Mínimo Direito",
}


def finger_label(code: int) -> str:
    return FINGER_LABELS.get(code, f"Dedo {code}")
