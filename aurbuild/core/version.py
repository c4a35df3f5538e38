"""版本比较与依赖约束

版本号按 pacman (libalpm) 规则比较: [epoch:]pkgver[-pkgrel]
  - epoch 缺省为 0，优先比较
  - pkgver 按 rpmvercmp 分段比较（数字段按数值，字母段按字典序，数字段 > 字母段）
  - pkgrel 仅在双方都带有时才参与比较，因此 "1.2" 与 "1.2-3" 视为相等

依赖约束形如 "foo", "foo>=1.2", "foo=2:1.0-1"。
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_DEP_RE = re.compile(r"^(?P<name>[^<>=]+?)(?:(?P<op><=|>=|<|>|=)(?P<version>.+))?$")


def _isdigit(ch: str) -> bool:
    return "0" <= ch <= "9"


def _isalpha(ch: str) -> bool:
    return "a" <= ch <= "z" or "A" <= ch <= "Z"


def _isalnum(ch: str) -> bool:
    return _isdigit(ch) or _isalpha(ch)


def rpmvercmp(a: str, b: str) -> int:
    """比较两个版本片段，返回 -1 / 0 / 1"""
    if a == b:
        return 0
    one = two = 0
    prev1 = prev2 = 0
    len1, len2 = len(a), len(b)

    while one < len1 and two < len2:
        while one < len1 and not _isalnum(a[one]):
            one += 1
        while two < len2 and not _isalnum(b[two]):
            two += 1
        if one >= len1 or two >= len2:
            break

        # 分隔符长度不同即可判定
        if one - prev1 != two - prev2:
            return -1 if one - prev1 < two - prev2 else 1

        end1, end2 = one, two
        isnum = _isdigit(a[end1])
        same_kind = _isdigit if isnum else _isalpha
        while end1 < len1 and same_kind(a[end1]):
            end1 += 1
        while end2 < len2 and same_kind(b[end2]):
            end2 += 1

        seg1, seg2 = a[one:end1], b[two:end2]
        if not seg2:
            # 类型不同: 数字段比字母段新
            return 1 if isnum else -1

        if isnum:
            seg1 = seg1.lstrip("0")
            seg2 = seg2.lstrip("0")
            if len(seg1) != len(seg2):
                return 1 if len(seg1) > len(seg2) else -1

        if seg1 != seg2:
            return 1 if seg1 > seg2 else -1

        one, two = end1, end2
        prev1, prev2 = one, two

    rest1, rest2 = a[one:], b[two:]
    if not rest1 and not rest2:
        return 0
    # 剩余的字母段永远不比空串新
    if (not rest1 and not _isalpha(rest2[0])) or (rest1 and _isalpha(rest1[0])):
        return -1
    return 1


def _parse_evr(evr: str) -> tuple[str, str, str]:
    """拆分 epoch / version / release"""
    epoch = "0"
    version = evr
    i = 0
    while i < len(evr) and _isdigit(evr[i]):
        i += 1
    if i < len(evr) and evr[i] == ":":
        epoch = evr[:i] or "0"
        version = evr[i + 1:]
    release = ""
    if "-" in version:
        version, release = version.rsplit("-", 1)
    return epoch, version, release


def vercmp(a: str, b: str) -> int:
    """比较两个完整版本号，a 新返回 1，相等 0，a 旧 -1"""
    if a == b:
        return 0
    epoch1, ver1, rel1 = _parse_evr(a)
    epoch2, ver2, rel2 = _parse_evr(b)
    ret = rpmvercmp(epoch1, epoch2)
    if ret == 0:
        ret = rpmvercmp(ver1, ver2)
        if ret == 0 and rel1 and rel2:
            ret = rpmvercmp(rel1, rel2)
    return ret


@dataclass(frozen=True)
class DependencySpec:
    """依赖约束: 包名 + 可选比较符与版本"""

    name: str
    op: str = ""
    version: str = ""

    @classmethod
    def parse(cls, text: str) -> DependencySpec:
        m = _DEP_RE.match(text.strip())
        if m is None:
            raise ValueError(f"无法解析依赖约束: {text!r}")
        return cls(name=m["name"], op=m["op"] or "", version=m["version"] or "")

    def satisfied_by(self, version: str) -> bool:
        """给定版本是否满足约束，无约束时恒为真"""
        if not self.op:
            return True
        if not version:
            return False
        cmp = vercmp(version, self.version)
        return {
            "<": cmp < 0,
            "<=": cmp <= 0,
            "=": cmp == 0,
            ">=": cmp >= 0,
            ">": cmp > 0,
        }[self.op]

    def matches(self, name: str, version: str, provides: tuple[str, ...] = ()) -> bool:
        """包（包名 + 版本 + provides）是否满足约束

        未带版本的 provides 只能满足无版本约束（与 pacman 一致）。
        """
        if name == self.name and self.satisfied_by(version):
            return True
        for provided in provides:
            p = DependencySpec.parse(provided)
            if p.name != self.name:
                continue
            if not self.op or (p.version and self.satisfied_by(p.version)):
                return True
        return False

    def __str__(self) -> str:
        return f"{self.name}{self.op}{self.version}"
