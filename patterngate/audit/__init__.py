# CUI // SP-CTI
